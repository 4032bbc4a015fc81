"""
Condenses CDP network requests into recorder ``network`` events: the first
request per fingerprint as a summary, later ones as a diff against it.
"""
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from deepdiff import DeepDiff


class NetworkSummarizer:
    """Fingerprints requests by tab, method and URL path and diffs repeats with DeepDiff."""
    MAX_VALUE_LENGTH = 128
    MAX_URL_LENGTH = 200
    MAX_STACK_FRAMES = 3
    # Static resources are not interesting in a replay timeline
    SKIPPED_TYPES = {'Stylesheet', 'Script', 'Image', 'Font', 'Media', 'Manifest'}
    IMPORTANT_HEADERS = ('Content-Type', 'Authorization', 'X-Requested-With')
    SKIPPED_DIFF_PATHS = ('callFrames', 'postData', 'postDataEntries', 'wallTime', 'timestamp',
                          'requestId', 'loaderId')

    def __init__(self):
        self._references: Dict[str, dict] = {}

    def fingerprint(self, event: dict) -> str:
        request = event.get('request', {})
        parsed = urlparse(request.get('url', ''))
        tab_id = event.get('tab_id', 'main')
        return f"{tab_id}::{request.get('method', '')}::{parsed.scheme}://{parsed.netloc}{parsed.path}"

    def process(self, event: dict) -> Optional[Dict[str, Any]]:
        """Return the ``network`` payload for a requestWillBeSent event, or None to skip it."""
        if event.get('type', 'Other') in self.SKIPPED_TYPES:
            return None

        fingerprint = self.fingerprint(event)
        reference = self._references.get(fingerprint)
        if reference is None:
            self._references[fingerprint] = event
            summary = self._simplify_event(event)
            summary['kind'] = 'request'
            return summary

        changes = {}
        diff = DeepDiff(reference, event, ignore_order=True)
        for path, change in diff.get('values_changed', {}).items():
            if any(pattern in path for pattern in self.SKIPPED_DIFF_PATHS):
                continue
            changes[path] = self._truncate_value(change.get('new_value'))
        if not changes:
            return None

        request = event.get('request', {})
        return {
            'kind': 'diff',
            'fingerprint': fingerprint,
            'method': request.get('method'),
            'url': self._simplify_url(request.get('url', '')),
            'changes': changes,
        }

    def reset(self):
        self._references.clear()

    def _simplify_event(self, event: dict) -> dict:
        request = event.get('request', {})
        summary = {
            'method': request.get('method'),
            'url': self._simplify_url(request.get('url', '')),
            'type': event.get('type'),
        }
        if 'initiator' in event:
            summary['initiator'] = self._simplify_initiator(event['initiator'])

        headers = request.get('headers', {})
        kept = {key: self._truncate_value(headers[key]) for key in self.IMPORTANT_HEADERS if key in headers}
        if kept:
            summary['headers'] = kept
        return summary

    def _simplify_initiator(self, initiator: dict) -> dict:
        simplified = {'type': initiator.get('type')}
        if 'url' in initiator:
            simplified['url'] = self._simplify_url(initiator['url'])
        frames = initiator.get('stack', {}).get('callFrames', [])[:self.MAX_STACK_FRAMES]
        if frames:
            simplified['stack'] = [
                {
                    'function': (frame.get('functionName') or 'anonymous')[:50],
                    'url': self._simplify_url(frame.get('url', '')),
                    'line': frame.get('lineNumber'),
                }
                for frame in frames
            ]
        return simplified

    def _simplify_url(self, url: str) -> str:
        """Long URLs keep their base and a short account of the query string."""
        if len(url) <= self.MAX_URL_LENGTH:
            return url
        parsed = urlparse(url)
        base = f"{parsed.scheme}://{parsed.netloc}{parsed.path}"
        if len(base) > self.MAX_URL_LENGTH:
            return base[:self.MAX_URL_LENGTH] + "..."
        if parsed.query:
            params = parsed.query.split('&')
            if len(params) > 3:
                return f"{base}?{params[0]}&...({len(params)} params)"
            return f"{base}?{parsed.query[:50]}..."
        return base

    def _truncate_value(self, value: Any) -> Any:
        if isinstance(value, str):
            if len(value) > self.MAX_VALUE_LENGTH:
                return value[:self.MAX_VALUE_LENGTH] + f"... ({len(value)} chars)"
            return value
        if isinstance(value, dict):
            return {k: self._truncate_value(v) for k, v in list(value.items())[:5]}
        if isinstance(value, list):
            return [self._truncate_value(v) for v in value[:5]]
        return value
