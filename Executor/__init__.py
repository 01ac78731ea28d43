from Executor.Executor import StepError, TestExecutor
from Executor.Healer import HealingResult, SelfHealer
