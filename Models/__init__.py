from Models.Config import (
    DEPTH_BUDGETS,
    ConfigurationError,
    ExecutorConfig,
    page_budget,
)
from Models.Crawler import (
    ApiEndpoint,
    ApiMap,
    ApplicationMap,
    CrawledPage,
    Interaction,
    InteractiveElement,
    UserFlow,
    WebsiteMap,
)
from Models.Progress import ProgressCallback, ProgressUpdate, notify
from Models.Result import (
    FAILED,
    HEALED,
    PASSED,
    ExecutionResult,
    ExecutionResults,
    HealingEvent,
)
from Models.Steps import (
    ApiRequest,
    Assert,
    Click,
    Comment,
    Fill,
    Navigate,
    Select,
    TestCase,
    TestStep,
    WaitForLoadState,
    WaitForNavigation,
    WaitForTimeout,
    parse_step,
)
