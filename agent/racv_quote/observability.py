"""
Observability Module for RACV Quote Agent

Instruments tool execution so a failed quote can be traced afterwards.

Every tool call records:
- What tool was called
- With what arguments
- What it returned (or what error occurred)
- How long it took
- Which quote session it belonged to

Dual instrumentation:
1. Local JSONL logs - full detail for debugging
2. LangWatch spans - for dashboard visualization
"""

import inspect
import json
import time
import traceback
from functools import wraps
from typing import Any, Callable, Optional

import langwatch


def _session_id(kwargs: dict, result: Any = None) -> Optional[str]:
    """Session id from the call's arguments, or from a JSON tool result."""
    if kwargs.get("session_id"):
        return kwargs["session_id"]
    if isinstance(result, str):
        try:
            payload = json.loads(result)
        except ValueError:
            return None
        if isinstance(payload, dict):
            return payload.get("sessionId")
    return None


def _is_error(result: Any) -> bool:
    if not isinstance(result, str):
        return False
    try:
        payload = json.loads(result)
    except ValueError:
        return False
    return isinstance(payload, dict) and "error" in payload


def observe_tool(func: Callable) -> Callable:
    """
    Decorator to log all tool executions.

    Works on sync and async tool methods. Logs to the activity logger with:
    - tool_name: ClassName.method_name
    - args: kwargs passed to the tool
    - result: return value (truncated)
    - duration_ms: execution time
    - success: False when the tool raised or returned an error payload

    Usage:
        from racv_quote.observability import observe_tool

        class MyTools(Toolkit):
            @observe_tool
            async def my_tool(self, session_id: str) -> str:
                ...
    """

    def _record_success(tool_name, kwargs, result, start, span):
        from racv_quote.activity_logger import get_logger

        duration_ms = (time.time() - start) * 1000
        span.update(output={"result": str(result)[:500]})

        get_logger().log_tool_call(
            tool_name=tool_name,
            args=kwargs,
            result=result,
            success=not _is_error(result),
            duration_ms=duration_ms,
            session_id=_session_id(kwargs, result)
        )
        print(f"[Observability] Tool complete: {tool_name} ({duration_ms:.1f}ms)")

    def _record_error(tool_name, kwargs, error, start, span):
        from racv_quote.activity_logger import get_logger

        duration_ms = (time.time() - start) * 1000
        span.update(error=str(error))

        get_logger().log_tool_error(
            tool_name=tool_name,
            args=kwargs,
            error=str(error),
            traceback_str=traceback.format_exc(),
            duration_ms=duration_ms,
            session_id=_session_id(kwargs)
        )
        print(f"[Observability] Tool ERROR: {tool_name} - {error}")

    if inspect.iscoroutinefunction(func):
        @wraps(func)
        async def async_wrapper(self, *args, **kwargs):
            tool_name = f"{self.__class__.__name__}.{func.__name__}"
            start = time.time()
            print(f"[Observability] Tool start: {tool_name}")

            with langwatch.span(type="tool", name=tool_name) as span:
                span.update(input={"args": kwargs})
                try:
                    result = await func(self, *args, **kwargs)
                except Exception as e:
                    _record_error(tool_name, kwargs, e, start, span)
                    raise
                _record_success(tool_name, kwargs, result, start, span)
                return result

        return async_wrapper

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        tool_name = f"{self.__class__.__name__}.{func.__name__}"
        start = time.time()
        print(f"[Observability] Tool start: {tool_name}")

        with langwatch.span(type="tool", name=tool_name) as span:
            span.update(input={"args": kwargs})
            try:
                result = func(self, *args, **kwargs)
            except Exception as e:
                _record_error(tool_name, kwargs, e, start, span)
                raise
            _record_success(tool_name, kwargs, result, start, span)
            return result

    return wrapper
