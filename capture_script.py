"""
The in-page capture script and the parser for the console messages it emits.

The script is re-installed on every document. It never decides anything: it
serializes DOM events (targets as element descriptors) and relays them as
``__CAPTURE_EVENT__<json>`` console messages for the Python collectors.
"""
import json
from typing import Any, Dict, Optional, Tuple

from playwright.async_api import Page

CAPTURE_MARKER = "__CAPTURE_EVENT__"

CAPTURE_SCRIPT = """
(() => {
    if (window.__capturepipeInstalled) return;
    window.__capturepipeInstalled = true;

    const MARKER = '__CAPTURE_EVENT__';
    const DESCRIBE_DEPTH = 3;
    const TEXT_LIMIT = 200;
    const VALUE_LIMIT = 100;
    const OLD_VALUE_LIMIT = 200;
    const MAX_MUTATIONS = 20;

    const emit = (type, payload) => {
        try {
            console.debug(MARKER + JSON.stringify({ type: type, payload: payload }));
        } catch (e) {
            // Unserializable payloads are dropped
        }
    };

    const describe = (el, depth = 0) => {
        if (!el || !el.tagName) return null;
        const root = el === document.documentElement || el === document.body;
        let index = 1;
        for (let s = el.previousElementSibling; s; s = s.previousElementSibling) {
            if (s.tagName === el.tagName) index++;
        }
        return {
            tag: el.tagName.toLowerCase(),
            id: el.id || null,
            classes: typeof el.className === 'string' ? el.className.trim().split(/\\s+/).filter(Boolean) : [],
            index: index,
            root: root,
            parent: (!root && depth < DESCRIBE_DEPTH) ? describe(el.parentElement, depth + 1) : null
        };
    };

    const scrollState = () => ({
        scrollX: window.scrollX,
        scrollY: window.scrollY,
        scrollHeight: document.documentElement.scrollHeight,
        clientHeight: document.documentElement.clientHeight,
        innerHeight: window.innerHeight,
        innerWidth: window.innerWidth
    });

    const serialize = (e) => {
        const t = e.target && e.target.nodeType === 1 ? e.target : null;
        const data = { eventClass: (e.constructor && e.constructor.name) || 'Event' };
        const type = e.type;

        if (type === 'scroll') return Object.assign(data, scrollState());
        if (type === 'resize') {
            data.innerWidth = window.innerWidth;
            data.innerHeight = window.innerHeight;
            return data;
        }
        if (type === 'error') {
            data.message = e.message || '';
            data.filename = e.filename;
            data.lineno = e.lineno;
            return data;
        }
        if (!t) return data;

        data.target = describe(t);
        if (type === 'click' || type === 'dblclick' || type.startsWith('mouse')) {
            data.x = e.clientX;
            data.y = e.clientY;
            data.text = (t.textContent || '').slice(0, TEXT_LIMIT);
            data.tagName = t.tagName;
            data.href = t.href;
            data.inputType = t.type;
        } else if (type.startsWith('key')) {
            data.key = e.key;
            data.code = e.code;
            data.keyCode = e.keyCode;
        } else if (type === 'input' || type === 'change') {
            data.value = (t.value || '').slice(0, VALUE_LIMIT);
            data.inputType = t.type || '';
            data.tagName = t.tagName;
        } else if (type.startsWith('touch') && e.touches && e.touches.length) {
            data.x = e.touches[0].clientX;
            data.y = e.touches[0].clientY;
        }
        return data;
    };

    const DOM_EVENTS = [
        'click', 'dblclick', 'mousedown', 'mouseup', 'mousemove', 'mouseenter', 'mouseleave', 'mouseover', 'mouseout',
        'keydown', 'keyup', 'keypress',
        'focus', 'blur', 'change', 'input', 'submit', 'reset', 'select',
        'wheel',
        'touchstart', 'touchend', 'touchmove', 'touchcancel'
    ];
    DOM_EVENTS.forEach((type) => {
        document.addEventListener(type, (e) => emit(type, serialize(e)), { passive: true, capture: true });
    });
    ['resize', 'error', 'hashchange', 'popstate'].forEach((type) => {
        window.addEventListener(type, (e) => emit(type, serialize(e)), { capture: true });
    });
    if (document.readyState === 'loading') {
        document.addEventListener('DOMContentLoaded', (e) => emit('DOMContentLoaded', serialize(e)));
        window.addEventListener('load', (e) => emit('load', serialize(e)));
    }
    window.addEventListener('scroll', () => emit('scroll', scrollState()), { passive: true, capture: true });
    window.addEventListener('beforeunload', () => emit('beforeunload', {}));
    window.addEventListener('pagehide', () => emit('pagehide', {}));
    window.addEventListener('online', () => emit('online', {}));
    window.addEventListener('offline', () => emit('offline', {}));
    document.addEventListener('visibilitychange', () => emit('visibilitychange', { state: document.visibilityState }));

    if (typeof MutationObserver !== 'undefined') {
        try {
            const observer = new MutationObserver((mutations) => {
                emit('mutations', {
                    records: mutations.slice(0, MAX_MUTATIONS).map((m) => ({
                        type: m.type,
                        target: describe(m.target.nodeType === 1 ? m.target : m.target.parentElement),
                        addedNodes: m.addedNodes ? m.addedNodes.length : 0,
                        removedNodes: m.removedNodes ? m.removedNodes.length : 0,
                        attributeName: m.attributeName,
                        oldValue: m.oldValue ? m.oldValue.slice(0, OLD_VALUE_LIMIT) : null
                    }))
                });
            });
            observer.observe(document.documentElement, {
                childList: true,
                subtree: true,
                attributes: true,
                characterData: true,
                attributeOldValue: true,
                characterDataOldValue: true
            });
        } catch (e) {
            // Mutations are simply not recorded
        }
    }

    if (typeof PerformanceObserver !== 'undefined') {
        try {
            const lcp = new PerformanceObserver((list) => {
                list.getEntries().forEach((entry) => {
                    emit('lcp', { startTime: entry.startTime, size: entry.size, id: entry.id });
                });
            });
            lcp.observe({ type: 'largest-contentful-paint', buffered: true });
        } catch (e) {
            // LCP unsupported here
        }
    }

    // Initial depth reading, as if the user had just scrolled
    emit('scroll', scrollState());
})();
"""

SNAPSHOT_SCRIPT = "() => document.documentElement ? document.documentElement.outerHTML : ''"


def parse_console_event(event: Dict[str, Any]) -> Optional[Tuple[str, Dict[str, Any]]]:
    """Turn a Runtime.consoleAPICalled event into ``(event_type, payload)``, or None if it is not ours."""
    try:
        value = event['args'][0]['value']
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(value, str) or not value.startswith(CAPTURE_MARKER):
        return None
    try:
        message = json.loads(value[len(CAPTURE_MARKER):])
    except json.JSONDecodeError:
        return None
    if not isinstance(message, dict) or not message.get('type'):
        return None
    payload = message.get('payload')
    return message['type'], payload if isinstance(payload, dict) else {}


async def install_capture_script(page: Page, current_document: bool = True):
    """
    Install for every future document, and for the one currently loaded unless
    ``current_document`` is False (internal pages refuse injected scripts).
    """
    await page.add_init_script(CAPTURE_SCRIPT)
    if current_document:
        await page.evaluate(CAPTURE_SCRIPT)


async def take_snapshot(page: Page) -> str:
    return await page.evaluate(SNAPSHOT_SCRIPT)
