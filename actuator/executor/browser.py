"""
browser.act skill over Playwright.

Each call holds its session's lock for the whole action, so two requests for
the same session never interleave. Envelope:

    {ok, action, sessionId, url, title, executionTime, result?, error?}
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from actuator.contracts.skills import ErrorKind
from actuator.executor import page_fields
from actuator.executor.sessions import DEFAULT_SESSION_ID, BrowserSession, SessionRegistry

if TYPE_CHECKING:
    from actuator.executor.dispatch import SkillContext

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 15_000
DEFAULT_WAIT_UNTIL = "load"
DEFAULT_TYPE_DELAY_MS = 30
DEFAULT_SLEEP_MS = 2_000
MAX_SLEEP_MS = 60_000
DEFAULT_PAGE_TEXT_CHARS = 4_000
FILL_THRESHOLD_CHARS = 200
DEFAULT_SNAPSHOT_CHARS = 1_200
CONTENT_MIN_LENGTH = 800
CONTENT_POLL_MS = 2_000
CONTENT_STABLE_POLLS = 3
CONTENT_READ_TIMEOUT_MS = 3_000
SMART_TYPE_RETRIES = 5
SMART_TYPE_RETRY_S = 1.0
WAIT_UNTIL_VALUES = ("load", "domcontentloaded", "networkidle", "commit")

KEY_TOKENS: Dict[str, str] = {
    "ENTER": "Enter",
    "TAB": "Tab",
    "ESC": "Escape",
    "BACKSPACE": "Backspace",
    "UP": "ArrowUp",
    "DOWN": "ArrowDown",
    "LEFT": "ArrowLeft",
    "RIGHT": "ArrowRight",
    "DELETE": "Delete",
    "HOME": "Home",
    "END": "End",
    "PAGEUP": "PageUp",
    "PAGEDOWN": "PageDown",
    "SPACE": "Space",
}
_MODIFIERS = {"CMD": "Meta", "META": "Meta", "CTRL": "Control", "ALT": "Alt", "SHIFT": "Shift"}
_TOKEN_SPLIT = re.compile(r"(\{[A-Za-z]+(?:\+[A-Za-z0-9]+)*\})")

_FATAL_MARKERS = ("browser closed", "browser has been closed", "disconnected")

# Strips page chrome before reading body text.
_PAGE_TEXT_SCRIPT = """
() => {
  const remove = ['nav', 'footer', 'header', 'script', 'style', 'noscript', 'aside',
    '[role="navigation"]', '[role="banner"]', '[role="contentinfo"]', '[role="complementary"]',
    '[role="dialog"]', '[role="alertdialog"]'];
  remove.forEach(sel => { try { document.querySelectorAll(sel).forEach(el => el.remove()); } catch (_) {} });
  for (const sel of ['main', 'article', '[role="main"]', '[role="article"]']) {
    const els = document.querySelectorAll(sel);
    if (els.length > 0) {
      const text = Array.from(els).map(el => el.innerText.trim()).filter(Boolean).join('\\n\\n');
      if (text.length > 100) return text.replace(/\\n{3,}/g, '\\n\\n').trim();
    }
  }
  return document.body ? document.body.innerText.replace(/\\n{3,}/g, '\\n\\n').trim() : '';
}
"""


def playwright_key(token: str) -> Optional[str]:
    """{ENTER} -> "Enter", {CMD+K} -> "Meta+K"; None for anything that is not a key token."""
    if not (token.startswith("{") and token.endswith("}")):
        return None
    parts = token[1:-1].split("+")
    keys: List[str] = []
    for idx, part in enumerate(parts):
        upper = part.upper()
        if idx < len(parts) - 1:
            if upper not in _MODIFIERS:
                return None
            keys.append(_MODIFIERS[upper])
            continue
        if upper in KEY_TOKENS:
            keys.append(KEY_TOKENS[upper])
        elif len(parts) > 1 and len(part) == 1:
            keys.append(part.upper())
        else:
            return None
    return "+".join(keys)


class BrowserActionError(RuntimeError):
    """An action failed in a way worth reporting with extra context."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.details = details


@dataclass
class BrowserCall:
    session: BrowserSession
    registry: SessionRegistry
    args: Dict[str, Any]
    timeout_ms: int

    @property
    def page(self) -> Any:
        return self.session.page

    def locator(self) -> Any:
        return self.page.locator(self.args["selector"]).first

    @property
    def wait_until(self) -> str:
        value = self.args.get("waitUntil") or DEFAULT_WAIT_UNTIL
        return value if value in WAIT_UNTIL_VALUES else DEFAULT_WAIT_UNTIL


async def _navigate(call: BrowserCall) -> Any:
    await call.page.bring_to_front()
    await call.page.goto(call.args["url"], wait_until=call.wait_until, timeout=call.timeout_ms)


async def _back(call: BrowserCall) -> Any:
    await call.page.go_back(wait_until=call.wait_until, timeout=call.timeout_ms)


async def _forward(call: BrowserCall) -> Any:
    await call.page.go_forward(wait_until=call.wait_until, timeout=call.timeout_ms)


async def _reload(call: BrowserCall) -> Any:
    await call.page.reload(wait_until=call.wait_until, timeout=call.timeout_ms)


async def _click(call: BrowserCall) -> Any:
    opts: Dict[str, Any] = {"timeout": call.timeout_ms}
    if call.args.get("button") in {"left", "right", "middle"}:
        opts["button"] = call.args["button"]
    if call.args.get("clickCount"):
        opts["click_count"] = int(call.args["clickCount"])
    await call.locator().click(**opts)


async def _hover(call: BrowserCall) -> Any:
    await call.locator().hover(timeout=call.timeout_ms)


async def _type_tokens(call: BrowserCall, selector: Optional[str], text: str, clear: bool) -> None:
    delay = call.args.get("delay")
    delay = DEFAULT_TYPE_DELAY_MS if delay is None else int(delay)
    locator = call.page.locator(selector).first if selector else None

    if locator is not None and clear:
        await locator.click(click_count=3, timeout=call.timeout_ms)
        await call.page.keyboard.press("Backspace")

    for part in _TOKEN_SPLIT.split(text):
        if not part:
            continue
        key = playwright_key(part)
        if key:
            await call.page.keyboard.press(key)
        elif locator is not None:
            if len(part) > FILL_THRESHOLD_CHARS:
                await locator.fill(part, timeout=call.timeout_ms)
            else:
                await locator.press_sequentially(part, delay=delay, timeout=call.timeout_ms)
        else:
            await call.page.keyboard.type(part, delay=delay)


async def _type(call: BrowserCall) -> Any:
    await _type_tokens(call, call.args.get("selector"), str(call.args["text"]), bool(call.args.get("clear")))


async def _keyboard(call: BrowserCall) -> Any:
    key = str(call.args["key"])
    await call.page.keyboard.press(playwright_key(key) or key)


async def _screenshot(call: BrowserCall) -> Any:
    full_page = bool(call.args.get("fullPage", False))
    path = call.args.get("path")
    if path:
        await call.page.screenshot(path=path, full_page=full_page, timeout=call.timeout_ms)
        return path
    raw = await call.page.screenshot(full_page=full_page, timeout=call.timeout_ms)
    return base64.b64encode(raw).decode("ascii")


async def _wait_for_selector(call: BrowserCall) -> Any:
    state = call.args.get("state") or "visible"
    await call.locator().wait_for(state=state, timeout=call.timeout_ms)


async def _wait_for_navigation(call: BrowserCall) -> Any:
    state = "networkidle" if call.wait_until == "networkidle" else "load"
    await call.page.wait_for_load_state(state, timeout=call.timeout_ms)


async def _sleep(call: BrowserCall) -> Any:
    raw = call.args.get("delay") or call.args.get("ms") or DEFAULT_SLEEP_MS
    ms = max(0, min(int(raw), MAX_SLEEP_MS))
    await asyncio.sleep(ms / 1000.0)
    return f"slept {ms}ms"


async def _scroll(call: BrowserCall) -> Any:
    if call.args.get("selector"):
        await call.locator().scroll_into_view_if_needed(timeout=call.timeout_ms)
        return None
    await call.page.mouse.wheel(float(call.args.get("x") or 0), float(call.args.get("y") or 0))


async def _select(call: BrowserCall) -> Any:
    opts: Dict[str, Any] = {}
    value, label = call.args.get("value"), call.args.get("label")
    if value is not None:
        opts["value"] = value if isinstance(value, list) else [value]
    if label is not None:
        opts["label"] = label if isinstance(label, list) else [label]
    return await call.locator().select_option(timeout=call.timeout_ms, **opts)


async def _get_text(call: BrowserCall) -> Any:
    return await call.locator().inner_text(timeout=call.timeout_ms)


async def _get_page_text(call: BrowserCall) -> Any:
    max_chars = int(call.args.get("maxChars") or DEFAULT_PAGE_TEXT_CHARS)
    if call.args.get("selector"):
        text = await call.locator().inner_text(timeout=call.timeout_ms)
    else:
        text = await call.page.evaluate(_PAGE_TEXT_SCRIPT)
    if isinstance(text, str) and len(text) > max_chars:
        text = text[:max_chars] + "…"
    return text


async def _get_attribute(call: BrowserCall) -> Any:
    return await call.locator().get_attribute(call.args["attribute"], timeout=call.timeout_ms)


async def _new_page(call: BrowserCall) -> Any:
    page = await call.registry.new_page(call.session)
    page.set_default_timeout(call.timeout_ms)


async def _evaluate(call: BrowserCall) -> Any:
    return await call.page.evaluate(call.args["expression"])


async def _content_length(call: BrowserCall) -> int:
    try:
        if call.args.get("selector"):
            return len(await call.locator().inner_text(timeout=CONTENT_READ_TIMEOUT_MS))
        return int(await call.page.evaluate(page_fields.MAIN_TEXT_LENGTH_SCRIPT) or 0)
    except Exception as exc:  # noqa: BLE001
        logger.debug("Content length read failed: %s", exc)
        return 0


async def _wait_for_content(call: BrowserCall) -> Any:
    """Poll until the page text is long enough and stops growing, or the timeout passes."""
    min_length = int(call.args.get("minLength") or CONTENT_MIN_LENGTH)
    poll_ms = int(call.args.get("pollMs") or CONTENT_POLL_MS)
    stable_for = int(call.args.get("stableFor") or CONTENT_STABLE_POLLS)
    deadline = time.monotonic() + call.timeout_ms / 1000.0
    last_length, stable, waited = 0, 0, 0
    while time.monotonic() < deadline:
        await asyncio.sleep(poll_ms / 1000.0)
        waited += poll_ms
        length = await _content_length(call)
        if length >= min_length and length == last_length:
            stable += 1
            if stable >= stable_for:
                break
        else:
            stable = 0
        last_length = length
    return f"content stable after {waited}ms ({last_length} chars)"


async def _discover_inputs(call: BrowserCall) -> Any:
    fields = await call.page.evaluate(page_fields.SCAN_FIELDS_SCRIPT)
    return page_fields.discovered_inputs(fields or [])


async def _get_page_snapshot(call: BrowserCall) -> Any:
    raw = await call.page.evaluate(page_fields.PAGE_SNAPSHOT_SCRIPT)
    return page_fields.format_page_snapshot(raw or {}, int(call.args.get("maxChars") or DEFAULT_SNAPSHOT_CHARS))


async def _smart_type(call: BrowserCall) -> Any:
    """Type into the most prominent visible input; SPAs get a few seconds to render one."""
    text = str(call.args["text"])
    candidates = page_fields.rank_inputs(await call.page.evaluate(page_fields.SCAN_FIELDS_SCRIPT) or [], penalize_auth=True)
    for attempt in range(1, SMART_TYPE_RETRIES + 1):
        if any(c["score"] > 0 for c in candidates):
            break
        logger.info("smartType: no usable input yet (attempt %s/%s)", attempt, SMART_TYPE_RETRIES)
        await asyncio.sleep(SMART_TYPE_RETRY_S)
        fields = await call.page.evaluate(page_fields.SCAN_FIELDS_SCRIPT) or []
        candidates = page_fields.rank_inputs(fields, penalize_auth=True)

    if not any(c["score"] > 0 for c in candidates):
        try:
            context = await call.page.evaluate(page_fields.PAGE_CONTEXT_SCRIPT)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Page context read failed: %s", exc)
            context = ""
        raise BrowserActionError(
            "smartType: no visible input elements found on the page after waiting",
            pageContext=context or "",
        )

    best = page_fields.pick_input(candidates, str(call.args.get("hint") or ""))
    selector = page_fields.selector_for(best, page_fields.TYPE_SELECTOR_ORDER)
    logger.info("smartType: typing into %s (tag=%s)", selector, best.get("tag"))
    clear = bool(call.args.get("clear")) or len(text) > FILL_THRESHOLD_CHARS
    await _type_tokens(call, selector, text, clear)
    return {"usedSelector": selector, "candidate": best}


async def _read_value(call: BrowserCall, selector: str) -> str:
    try:
        return str(await call.page.evaluate(page_fields.READ_VALUE_SCRIPT, selector) or "")
    except Exception as exc:  # noqa: BLE001
        logger.debug("Reading %s failed: %s", selector, exc)
        return ""


async def _recipient_confirmed(call: BrowserCall, address: str) -> bool:
    try:
        return bool(await call.page.evaluate(page_fields.RECIPIENT_CHIP_SCRIPT, address))
    except Exception as exc:  # noqa: BLE001
        logger.debug("Recipient chip lookup failed: %s", exc)
        return False


async def _smart_fill(call: BrowserCall) -> Any:
    """Fill a compose form (to / subject / body) found by attribute heuristics."""
    wanted = {role: call.args.get(role) for role in page_fields.FILL_ROLES if call.args.get(role)}
    fields = page_fields.fillable_fields(await call.page.evaluate(page_fields.SCAN_FIELDS_SCRIPT) or [])
    selectors: Dict[str, Optional[str]] = {}
    for role in page_fields.FILL_ROLES:
        field = page_fields.best_field_for(fields, role) if role in wanted else None
        selectors[role] = page_fields.selector_for(field, page_fields.FILL_SELECTOR_ORDER) if field else None
    logger.info("smartFill resolved selectors: %s", selectors)

    filled: List[str] = []
    skipped: List[str] = []
    errors: List[str] = []
    for role, value in wanted.items():
        selector = selectors[role]
        if selector is None:
            errors.append(f"{role}: no matching field found in DOM")
            continue
        value = str(value)
        try:
            if role == "to" and await _recipient_confirmed(call, value):
                skipped.append("to — already confirmed as chip")
                continue
            current = (await _read_value(call, selector)).strip()
            if role == "to":
                done = bool(current) and value.strip().lower() in current.lower()
            elif role == "subject":
                done = bool(current) and current.lower() == value.strip().lower()
            else:
                done = bool(current) and current == value.strip()
            if done:
                skipped.append(f"{role} — already filled")
                continue
            if role == "body":
                await call.page.locator(selector).first.click(timeout=call.timeout_ms)
            await _type_tokens(call, selector, value + "{TAB}" if role == "to" else value, bool(current))
            filled.append(f"{role} → {selector}")
        except Exception as exc:  # noqa: BLE001
            errors.append(f"{role}: {exc}")

    if errors and not filled:
        raise BrowserActionError(
            "; ".join(errors),
            fields=[{k: f.get(k) for k in ("tag", "name", "ariaLabel", "placeholder")} for f in fields],
        )
    result: Dict[str, Any] = {"filled": filled, "selectors": selectors}
    if skipped:
        result["skipped"] = skipped
    if errors:
        result["errors"] = errors
    return result


ActionFn = Callable[[BrowserCall], Awaitable[Any]]

ACTIONS: Dict[str, ActionFn] = {
    "navigate": _navigate,
    "back": _back,
    "forward": _forward,
    "reload": _reload,
    "click": _click,
    "hover": _hover,
    "type": _type,
    "keyboard": _keyboard,
    "screenshot": _screenshot,
    "waitForSelector": _wait_for_selector,
    "waitForNavigation": _wait_for_navigation,
    "sleep": _sleep,
    "scroll": _scroll,
    "select": _select,
    "getText": _get_text,
    "getPageText": _get_page_text,
    "getAttribute": _get_attribute,
    "newPage": _new_page,
    "evaluate": _evaluate,
    "waitForContent": _wait_for_content,
    "discoverInputs": _discover_inputs,
    "getPageSnapshot": _get_page_snapshot,
    "smartType": _smart_type,
    "smartFill": _smart_fill,
}

# Handled outside the session lock by SessionRegistry.close.
SESSION_ACTIONS = ("close",)

REQUIRED_ARGS: Dict[str, tuple] = {
    "navigate": ("url",),
    "click": ("selector",),
    "hover": ("selector",),
    "type": ("text",),
    "keyboard": ("key",),
    "waitForSelector": ("selector",),
    "select": ("selector",),
    "getText": ("selector",),
    "getAttribute": ("selector", "attribute"),
    "evaluate": ("expression",),
    "smartType": ("text",),
}

# At least one of these must be given.
ANY_OF_ARGS: Dict[str, tuple] = {
    "smartFill": page_fields.FILL_ROLES,
}


def _failure(action: Any, session_id: str, error: str, kind: ErrorKind, started: float, url: str = "") -> Dict[str, Any]:
    return {
        "ok": False,
        "action": action,
        "sessionId": session_id,
        "url": url,
        "error": error,
        "errorKind": kind.value,
        "executionTime": int((time.monotonic() - started) * 1000),
    }


async def browser_act(args: Dict[str, Any], registry: SessionRegistry) -> Dict[str, Any]:
    started = time.monotonic()
    action = args.get("action")
    session_id = str(args.get("sessionId") or DEFAULT_SESSION_ID)

    fn = ACTIONS.get(action) if isinstance(action, str) else None
    if fn is None and action not in SESSION_ACTIONS:
        return _failure(action, session_id, f"Unknown browser.act action: {action}", ErrorKind.INVALID_REQUEST, started)
    for name in REQUIRED_ARGS.get(action, ()):
        if args.get(name) is None or args.get(name) == "":
            return _failure(action, session_id, f"{name} is required for {action}", ErrorKind.INVALID_REQUEST, started)
    any_of = ANY_OF_ARGS.get(action)
    if any_of and not any(args.get(name) for name in any_of):
        message = f"{action} requires at least one of: {', '.join(any_of)}"
        return _failure(action, session_id, message, ErrorKind.INVALID_REQUEST, started)
    try:
        timeout_ms = int(args.get("timeoutMs") or DEFAULT_TIMEOUT_MS)
    except (TypeError, ValueError):
        return _failure(action, session_id, "timeoutMs must be a number", ErrorKind.INVALID_REQUEST, started)

    if action == "close":
        closed = await registry.close(session_id)
        return {
            "ok": True,
            "action": action,
            "sessionId": session_id,
            "url": "",
            "title": "",
            "executionTime": int((time.monotonic() - started) * 1000),
            "result": "session closed" if closed else "no session",
        }

    session: Optional[BrowserSession] = None
    try:
        async with registry.acquire(session_id) as session:
            try:
                session.page.set_default_timeout(timeout_ms)
                result = await fn(BrowserCall(session=session, registry=registry, args=args, timeout_ms=timeout_ms))
            except Exception as exc:
                if any(marker in str(exc).lower() for marker in _FATAL_MARKERS) and not session.closed:
                    logger.warning("Browser for session %s is gone; dropping session", session_id)
                    await registry.discard(session)
                raise
            url, title = "", ""
            if not session.closed:
                url = session.page.url
                try:
                    title = await session.page.title()
                except Exception:  # noqa: BLE001
                    title = ""
    except Exception as exc:  # noqa: BLE001
        message = str(exc)
        logger.error("browser.act %s failed: %s", action, message)
        err_url = ""
        if session is not None and not session.closed:
            try:
                err_url = session.page.url
            except Exception:  # noqa: BLE001
                err_url = ""
        failure = _failure(action, session_id, message, ErrorKind.EXECUTION_FAILURE, started, url=err_url)
        if isinstance(exc, BrowserActionError):
            failure.update(exc.details)
        return failure

    response: Dict[str, Any] = {
        "ok": True,
        "action": action,
        "sessionId": session_id,
        "url": url,
        "title": title,
        "executionTime": int((time.monotonic() - started) * 1000),
    }
    if result is not None:
        response["result"] = result
    logger.info("browser.act %s completed in %sms", action, response["executionTime"])
    return response


async def handle_browser_act(args: Dict[str, Any], ctx: "SkillContext") -> Dict[str, Any]:
    return await browser_act(args, ctx.sessions)


__all__ = ["KEY_TOKENS", "ACTIONS", "BrowserActionError", "playwright_key", "browser_act", "handle_browser_act"]
