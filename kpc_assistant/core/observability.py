"""
Logging for the KPC assistant.

Every record is tagged with the session, the dispatch (one chat() or
chat_stream() call) and the stage of that dispatch it was logged from:
classify, capability, synthesize or answer. A single question can then be
followed through the transport and backend logs with one grep.
"""

import logging
import logging.config
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Iterator, Optional

# Context variables for dispatch correlation
execution_id: ContextVar[Optional[str]] = ContextVar('execution_id', default=None)
session_id: ContextVar[Optional[str]] = ContextVar('session_id', default=None)
stage: ContextVar[Optional[str]] = ContextVar('stage', default=None)

STAGE_CLASSIFY = "classify"
STAGE_CAPABILITY = "capability"
STAGE_SYNTHESIZE = "synthesize"
STAGE_ANSWER = "answer"

_CONSOLE_FORMAT = '[%(levelname)s] %(execution_id)s/%(stage)s %(component)s - %(message)s'
_FILE_FORMAT = ('%(asctime)s [%(levelname)s] session=%(session_id)s dispatch=%(execution_id)s '
                'stage=%(stage)s %(component)s - %(message)s')

# Loggers that get the configured level explicitly, one per subsystem.
_SUBSYSTEMS = ("session", "api", "modules.transport", "modules.llm",
               "modules.router", "modules.chat")


class DispatchContextFilter(logging.Filter):
    """Stamp records with session, dispatch, stage and component."""

    def filter(self, record):
        record.execution_id = execution_id.get() or "-"
        record.session_id = session_id.get() or "-"
        record.stage = stage.get() or "-"
        if not hasattr(record, "component"):
            # plain getLogger(__name__) loggers: drop the package prefix
            record.component = record.name.rsplit(".", 1)[-1]
        return True


class ComponentAdapter(logging.LoggerAdapter):
    """Logger adapter that names the subsystem a record came from."""

    def __init__(self, logger, component: str):
        super().__init__(logger, {'component': component})

    def process(self, msg, kwargs):
        extra = dict(kwargs.get('extra') or {})
        extra.setdefault('component', self.extra['component'])
        kwargs['extra'] = extra
        return msg, kwargs


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """
    Configure logging for the whole assistant.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file that receives the detailed format as well
    """
    level = (level or "INFO").upper()

    handlers = {
        # stderr: the CLI owns stdout for answers.
        'console': {
            'class': 'logging.StreamHandler',
            'level': level,
            'formatter': 'console',
            'stream': sys.stderr,
            'filters': ['dispatch'],
        }
    }
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers['file'] = {
            'class': 'logging.FileHandler',
            'level': level,
            'formatter': 'detailed',
            'filename': str(log_file),
            'encoding': 'utf-8',
            'filters': ['dispatch'],
        }

    loggers = {f'kpc_assistant.{name}': {'level': level, 'propagate': True} for name in _SUBSYSTEMS}
    # requests' connection pool logs every Ollama probe at DEBUG.
    loggers['urllib3'] = {'level': 'WARNING', 'propagate': True}

    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'filters': {'dispatch': {'()': DispatchContextFilter}},
        'formatters': {
            'console': {'format': _CONSOLE_FORMAT},
            'detailed': {'format': _FILE_FORMAT, 'datefmt': '%Y-%m-%d %H:%M:%S'},
        },
        'handlers': handlers,
        'root': {'level': level, 'handlers': list(handlers)},
        'loggers': loggers,
    })


def get_logger(component: str) -> ComponentAdapter:
    """
    Get a logger for one assistant subsystem ('session', 'api', ...).
    """
    return ComponentAdapter(logging.getLogger(f'kpc_assistant.{component}'), component)


def set_execution_context(execution_id_val: Optional[str] = None,
                          session_id_val: Optional[str] = None) -> None:
    """Set dispatch and session ids for the current context. Starting a dispatch clears the stage."""
    if execution_id_val:
        execution_id.set(execution_id_val)
        stage.set(None)
    if session_id_val:
        session_id.set(session_id_val)


@contextmanager
def dispatch_stage(name: str) -> Iterator[None]:
    """Tag records logged inside the block with a dispatch stage."""
    token = stage.set(name)
    try:
        yield
    finally:
        stage.reset(token)


def generate_execution_id() -> str:
    return uuid.uuid4().hex[:8]
