import logging

from gorgon.diagnostics import Diagnostic, DiagnosticKind, DiagnosticStream
from gorgon.logging import configure_logging, get_logger


def _diag(generation, kind=DiagnosticKind.UNRESOLVED_COMPONENT):
    return Diagnostic(kind, "/", "unknown component: ghost", "ghost", generation)


def test_stream_fans_out_until_unsubscribed():
    stream = DiagnosticStream()
    seen = []
    unsubscribe = stream.subscribe(seen.append)
    stream.emit(_diag(1))
    unsubscribe()
    unsubscribe()
    stream.emit(_diag(1))
    assert len(seen) == 1
    assert str(seen[0]) == "[unresolved_component] /: unknown component: ghost"


def test_stream_keeps_recent_generations():
    stream = DiagnosticStream(keep_generations=2)
    stream.emit_all([_diag(1), _diag(2), _diag(3), _diag(3)])
    assert stream.history(1) == []
    assert len(stream.history(3)) == 2
    assert [d.generation for d in stream.history()] == [2, 3, 3]


def test_fatal_kinds():
    assert DiagnosticKind.PARSE_ERROR.fatal
    assert DiagnosticKind.RENDER_LIMIT_EXCEEDED.fatal
    assert not DiagnosticKind.CYCLE_DETECTED.fatal
    assert DiagnosticKind.REGISTRATION_CONFLICT.fatal
    assert not DiagnosticKind.CONFLICTED_COMPONENT.fatal
    assert _diag(0).with_generation(5).generation == 5


def test_invoker_conflict_is_logged_as_warning():
    records = []

    class ListHandler(logging.Handler):
        def emit(self, record):
            records.append(record)

    handler = ListHandler()
    diagnostics_logger = get_logger("diagnostics")
    diagnostics_logger.addHandler(handler)
    try:
        stream = DiagnosticStream()
        stream.emit(_diag(1, DiagnosticKind.CONFLICTED_COMPONENT))
        stream.emit(_diag(1, DiagnosticKind.REGISTRATION_CONFLICT))
    finally:
        diagnostics_logger.removeHandler(handler)
    assert [r.levelno for r in records] == [logging.WARNING, logging.ERROR]


def test_configure_logging(tmp_path):
    log_file = tmp_path / "gorgon.log"
    configure_logging(verbose=False, log_file=log_file)
    configure_logging(verbose=False, log_file=log_file)
    logger = logging.getLogger("gorgon")
    assert len(logger.handlers) == 2
    assert logger.level == logging.DEBUG
    get_logger("engine").debug("written to file only")
    for handler in logger.handlers:
        handler.flush()
    assert "written to file only" in log_file.read_text(encoding="utf-8")

    logger = configure_logging(verbose=True)
    assert [type(h) for h in logger.handlers] == [logging.StreamHandler]
    assert logger.level == logging.DEBUG
    assert get_logger().name == "gorgon"

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
