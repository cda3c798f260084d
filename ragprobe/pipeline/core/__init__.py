from .config import RunConfig, GenerationOptions
from .context import RunContext, CancelToken, StageStats
from .artifacts import ResultStore
from .progress import ProgressEvent, ProgressReporter, EventChannel, RichProgressReporter
from .retry import Retryer, ModelInvoker
from .errors import ConfigurationError, RunCancelled, MalformedResponseError
from .models import Category, QAPair, Chunk, Document, KnowledgeBase, TestCase, Task, ModelCallResult, ResultEntry, TokenUsage
