from Reporter.Progress import ProgressStream
from Reporter.Reporter import Reporter
