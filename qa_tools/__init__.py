"""Device, oracle and storage collaborators used by the agents."""
