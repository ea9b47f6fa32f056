"""Agent package for the natural-language mobile test pipeline."""

from .planner import Planner
from .resolver import Resolver
from .executor import Executor
from .supervisor import Supervisor
from .coordinator import Coordinator
from .learning import LearningStore
