"""Unit tests for core.logger."""

import io
import logging

from decision_engine.core.logger import setup_logging


def test_records_tagged_with_symbol(tmp_path):
    stream = io.StringIO()
    setup_logging("DEBUG", tmp_path, "engine.log", symbol="XRPEUR", stream=stream)
    logging.getLogger("decision_engine.exits").info("pressure 72")
    text = stream.getvalue()
    assert "| XRPEUR | decision_engine.exits | pressure 72" in text
    assert "pressure 72" in (tmp_path / "engine.log").read_text(encoding="utf-8")


def test_setup_replaces_handlers():
    stream = io.StringIO()
    setup_logging("INFO", stream=io.StringIO())
    pkg = setup_logging("WARNING", stream=stream)
    assert len(pkg.handlers) == 1
    logging.getLogger("decision_engine.dca").info("hidden")
    logging.getLogger("decision_engine.dca").warning("shown")
    assert "hidden" not in stream.getvalue()
    assert "shown" in stream.getvalue()
