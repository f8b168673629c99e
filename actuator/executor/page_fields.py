"""
Input-field heuristics for browser.act's selector-free actions.

The page scripts only collect raw element descriptors; scoring, role matching
and selector building happen here so they run without a browser.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

FIELD_SELECTORS = (
    'input:not([type="hidden"]):not([type="submit"]):not([type="button"])'
    ':not([type="checkbox"]):not([type="radio"]):not([type="file"])',
    "textarea",
    '[contenteditable]:not([contenteditable="false"])',
)

_DESCRIBE_JS = """
(el) => {
  const rect = el.getBoundingClientRect();
  const style = window.getComputedStyle(el);
  const displayed = rect.width > 0 && rect.height > 0 && style.display !== 'none'
    && style.visibility !== 'hidden' && style.opacity !== '0';
  return {
    tag: el.tagName.toLowerCase(),
    type: el.getAttribute('type') || null,
    id: el.id || null,
    name: el.getAttribute('name') || null,
    placeholder: el.getAttribute('placeholder') || null,
    ariaLabel: el.getAttribute('aria-label') || null,
    dataTestId: el.getAttribute('data-testid') || null,
    contenteditable: el.getAttribute('contenteditable') || null,
    role: el.getAttribute('role') || null,
    classes: typeof el.className === 'string' ? el.className.split(' ').filter(Boolean).slice(0, 5) : [],
    value: el.value ? String(el.value).substring(0, 60) : null,
    autofocus: el.getAttribute('autofocus') !== null,
    rect: {x: Math.round(rect.x), y: Math.round(rect.y), w: Math.round(rect.width), h: Math.round(rect.height)},
    displayed: displayed,
    topInView: rect.top >= 0 && rect.top < window.innerHeight,
    onScreen: displayed && rect.top < window.innerHeight && rect.bottom > 0,
  };
}
"""

_COLLECT_JS = """
  const describe = %s;
  const seen = new Set();
  const fields = [];
  for (const sel of %s) {
    document.querySelectorAll(sel).forEach((el) => {
      if (seen.has(el)) return;
      seen.add(el);
      fields.push(describe(el));
    });
  }
""" % (_DESCRIBE_JS.strip(), json.dumps(list(FIELD_SELECTORS)))

SCAN_FIELDS_SCRIPT = "() => {%s  return fields;\n}" % _COLLECT_JS

PAGE_SNAPSHOT_SCRIPT = """() => {%s
  const buttons = [];
  document.querySelectorAll('button, [role="button"], a[href]').forEach((el) => {
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    const visible = rect.width > 0 && rect.height > 0 && style.display !== 'none'
      && style.visibility !== 'hidden' && style.opacity !== '0'
      && rect.top < window.innerHeight && rect.bottom > 0;
    if (!visible) return;
    const label = el.getAttribute('aria-label') || el.getAttribute('title')
      || (el.innerText || '').trim().substring(0, 60) || '';
    buttons.push({role: el.getAttribute('role') || el.tagName.toLowerCase(), label: label});
  });
  return {url: window.location.href, title: document.title.substring(0, 80), fields: fields, buttons: buttons};
}""" % _COLLECT_JS

READ_VALUE_SCRIPT = """(selector) => {
  const el = document.querySelector(selector);
  if (!el) return null;
  if (el.tagName === 'INPUT' || el.tagName === 'TEXTAREA') return el.value || '';
  return el.innerText || el.textContent || '';
}"""

# Webmail clients turn a confirmed address into a "chip" element.
RECIPIENT_CHIP_SCRIPT = """(addr) => {
  const chips = document.querySelectorAll('[data-hovercard-id], .vR span[email], .afV [email]');
  for (const chip of chips) {
    const text = chip.getAttribute('data-hovercard-id') || chip.getAttribute('email') || chip.textContent || '';
    if (text.toLowerCase().includes(addr.toLowerCase())) return true;
  }
  return false;
}"""

MAIN_TEXT_LENGTH_SCRIPT = """() => {
  const main = document.querySelector('main') || document.querySelector('article')
    || document.querySelector('[role="main"]') || document.body;
  return (main ? main.innerText : document.body.innerText).trim().length;
}"""

PAGE_CONTEXT_SCRIPT = """() => {
  const el = document.querySelector('main') || document.querySelector('article') || document.body;
  return (el ? el.innerText : document.body.innerText).trim().substring(0, 400);
}"""

MAX_DISCOVERED_INPUTS = 10
MAX_SNAPSHOT_INPUTS = 10
MAX_SNAPSHOT_BUTTONS = 15
SNAPSHOT_VALUE_CHARS = 40
FILL_ROLES = ("to", "subject", "body")
_FILL_EXCLUDED_TYPES = {"search", "password"}

TYPE_SELECTOR_ORDER = ("id", "name", "placeholder", "ariaLabel")
FILL_SELECTOR_ORDER = ("id", "name", "ariaLabel", "dataTestId", "placeholder")

_CSS_SPECIAL = re.compile(r"[^\w-]", re.ASCII)
_CSS_CONTROL = re.compile(r"[\x00-\x1f\x7f]")


def css_escape(value: str) -> str:
    # Control chars and a leading digit need code-point escapes ("\31 " for "1").
    escaped = _CSS_SPECIAL.sub(
        lambda m: f"\\{ord(m.group(0)):x} " if _CSS_CONTROL.match(m.group(0)) else "\\" + m.group(0),
        value,
    )
    if escaped == "-":
        return "\\-"
    lead = 1 if escaped.startswith("-") else 0
    if len(escaped) > lead and escaped[lead].isdigit():
        escaped = f"{escaped[:lead]}\\{ord(escaped[lead]):x} {escaped[lead + 1:]}"
    return escaped


def _attr(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _lower(field: Dict[str, Any], key: str) -> str:
    return str(field.get(key) or "").lower()


def is_auth_field(field: Dict[str, Any]) -> bool:
    kind, placeholder = _lower(field, "type"), _lower(field, "placeholder")
    label, name = _lower(field, "ariaLabel"), _lower(field, "name")
    return (
        kind in ("email", "password", "tel")
        or any(word in placeholder for word in ("email", "password", "sign in"))
        or any(word in label for word in ("email", "password"))
        or name in ("email", "password")
    )


def input_score(field: Dict[str, Any], penalize_auth: bool = False) -> int:
    """-1 for hidden fields; otherwise prominence points."""
    if not field.get("displayed"):
        return -1
    score = 0
    if field.get("topInView"):
        score += 10
    if field.get("autofocus"):
        score += 5
    if field.get("placeholder"):
        score += 3
    if field.get("ariaLabel"):
        score += 2
    if field.get("id"):
        score += 1
    if penalize_auth and is_auth_field(field):
        score -= 20
    return score


def rank_inputs(fields: Iterable[Dict[str, Any]], penalize_auth: bool = False) -> List[Dict[str, Any]]:
    ranked = []
    for field in fields:
        score = input_score(field, penalize_auth=penalize_auth)
        if score >= 0:
            ranked.append(dict(field, score=score))
    return sorted(ranked, key=lambda f: -f["score"])


def discovered_inputs(fields: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    keys = ("tag", "type", "id", "name", "placeholder", "ariaLabel", "contenteditable", "role", "classes", "rect", "score")
    return [{k: f.get(k) for k in keys} for f in rank_inputs(fields)[:MAX_DISCOVERED_INPUTS]]


def pick_input(candidates: Sequence[Dict[str, Any]], hint: str = "") -> Optional[Dict[str, Any]]:
    """Best-ranked candidate, unless one mentions the hint in its labels."""
    if not candidates:
        return None
    hint = hint.lower()
    if hint:
        for candidate in candidates:
            if any(hint in _lower(candidate, key) for key in ("placeholder", "ariaLabel", "id", "name")):
                return candidate
    return candidates[0]


def selector_for(field: Dict[str, Any], order: Sequence[str] = TYPE_SELECTOR_ORDER) -> str:
    tag = field.get("tag") or "input"
    for key in order:
        value = field.get(key)
        if not value:
            continue
        if key == "id":
            return f"#{css_escape(value)}"
        if key == "name":
            return f'{tag}[name="{_attr(value)}"]'
        if key == "ariaLabel":
            return f'[aria-label="{_attr(value)}"]'
        if key == "dataTestId":
            return f'[data-testid="{_attr(value)}"]'
        if key == "placeholder":
            if field.get("contenteditable"):
                return f'[contenteditable][placeholder="{_attr(value)}"]'
            return f'{tag}[placeholder="{_attr(value)}"]'
    if field.get("contenteditable"):
        return '[contenteditable]:not([contenteditable="false"])'
    return tag


def role_score(field: Dict[str, Any], role: str) -> int:
    label, placeholder = _lower(field, "ariaLabel"), _lower(field, "placeholder")
    name, test_id, ident = _lower(field, "name"), _lower(field, "dataTestId"), _lower(field, "id")
    score = 0
    if role == "to":
        if label in ("to", "to recipients"):
            score += 30
        if "to" in label or "recipient" in label:
            score += 20
        if "to" in placeholder or "recipient" in placeholder:
            score += 15
        if name == "to" or "recipient" in name:
            score += 15
        if "to" in test_id or "recipient" in test_id:
            score += 15
        if "to" in ident or "recipient" in ident:
            score += 10
        if field.get("type") == "email":
            score += 5
        if name == "q" or "search" in label or "search" in placeholder or ident == "gbqfq":
            score -= 50
    elif role == "subject":
        if "subject" in label:
            score += 20
        if "subject" in placeholder:
            score += 15
        if "subject" in name:
            score += 20
        if "subject" in test_id:
            score += 15
        if "subject" in ident:
            score += 10
    elif role == "body":
        if "body" in label or "message" in label:
            score += 20
        if "body" in placeholder or "message" in placeholder:
            score += 15
        if field.get("contenteditable"):
            score += 10
        if field.get("tag") == "textarea":
            score += 8
        if any(word in test_id for word in ("body", "editor", "rooster")):
            score += 15
        if "body" in ident or "editor" in ident:
            score += 10
    return score


def fillable_fields(fields: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """On-screen compose candidates, top to bottom."""
    visible = [
        f for f in fields
        if f.get("onScreen") and str(f.get("type") or "").lower() not in _FILL_EXCLUDED_TYPES
    ]
    return sorted(visible, key=lambda f: (f.get("rect") or {}).get("y") or 0)


def best_field_for(fields: Sequence[Dict[str, Any]], role: str) -> Optional[Dict[str, Any]]:
    best: Optional[Dict[str, Any]] = None
    best_score: Optional[int] = None
    for field in fields:
        score = role_score(field, role)
        if best_score is None or score > best_score:
            best, best_score = field, score
    if best is None or best_score is None or best_score < 0:
        return None
    return best


def _describe_input(field: Dict[str, Any]) -> str:
    parts = []
    for key, attr in (("id", "id"), ("name", "name"), ("ariaLabel", "aria-label"), ("placeholder", "placeholder")):
        if field.get(key):
            parts.append(f'{attr}="{field[key]}"')
    if field.get("contenteditable"):
        parts.append("contenteditable")
    if field.get("value"):
        parts.append(f'value="{str(field["value"])[:SNAPSHOT_VALUE_CHARS]}"')
    return f"  <{field.get('tag') or 'input'} {', '.join(parts)}>"


def format_page_snapshot(raw: Dict[str, Any], max_chars: int) -> str:
    inputs = [_describe_input(f) for f in raw.get("fields") or [] if f.get("onScreen")][:MAX_SNAPSHOT_INPUTS]
    buttons = [
        f'  <{b.get("role") or "button"} "{b["label"]}">' for b in raw.get("buttons") or [] if b.get("label")
    ][:MAX_SNAPSHOT_BUTTONS]
    lines = [
        f"URL: {raw.get('url') or ''}",
        f"Title: {raw.get('title') or ''}",
        f"Visible inputs ({len(inputs)}):",
        "\n".join(inputs) if inputs else "  (none)",
        f"Visible buttons/links ({len(buttons)}):",
        "\n".join(buttons) if buttons else "  (none)",
    ]
    return "\n".join(lines)[:max_chars]


__all__ = [
    "SCAN_FIELDS_SCRIPT",
    "PAGE_SNAPSHOT_SCRIPT",
    "READ_VALUE_SCRIPT",
    "RECIPIENT_CHIP_SCRIPT",
    "MAIN_TEXT_LENGTH_SCRIPT",
    "PAGE_CONTEXT_SCRIPT",
    "FILL_ROLES",
    "TYPE_SELECTOR_ORDER",
    "FILL_SELECTOR_ORDER",
    "css_escape",
    "is_auth_field",
    "input_score",
    "rank_inputs",
    "discovered_inputs",
    "pick_input",
    "selector_for",
    "role_score",
    "fillable_fields",
    "best_field_for",
    "format_page_snapshot",
]
