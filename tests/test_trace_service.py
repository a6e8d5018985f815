import sys

from slimcore.services import trace
from slimcore.services.trace import Tracer


def raise_nested():
    try:
        int("x")
    except ValueError as e:
        raise RuntimeError("conversion failed") from e


def capture(func):
    try:
        func()
    except Exception as e:
        return e


def test_format_includes_chain_and_final_line():
    lines = Tracer().format(capture(raise_nested))

    assert lines[0] == "Traceback (most recent call last):"
    assert any(line.startswith("ValueError: invalid literal") for line in lines)
    assert lines[-1] == "RuntimeError: conversion failed"
    assert all(line.strip() for line in lines)


def test_limit_trims_frames():
    full = Tracer().format(capture(raise_nested))
    limited = Tracer(limit=0).format(capture(raise_nested))
    assert len(limited) < len(full)


def test_register_and_install(app, monkeypatch):
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)

    trace.register(app, "trace", {"install": True, "limit": 5})

    tracer = app.resolve("trace")
    assert isinstance(tracer, Tracer)
    assert tracer.limit == 5
    assert sys.excepthook == tracer.excepthook


def test_excepthook_writes_trace(capsys):
    error = capture(raise_nested)
    Tracer().excepthook(type(error), error, error.__traceback__)
    assert "RuntimeError: conversion failed" in capsys.readouterr().err
