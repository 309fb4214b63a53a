from __future__ import annotations

import logging
from threading import RLock
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class AlertStore:
    """
    In-memory alert records and their secondary indices.

    - alerts: alert id -> record dict (camelCase keys, same shape as the API model)
    - fingerprint index: fingerprint -> id of the live alert for that fingerprint
    - rule index: rule id -> insertion-ordered set of alert ids

    Every method takes `lock`, and every index update happens under the same
    acquisition as the record change it belongs to. Callers that need several
    steps to be atomic (check-then-update, insert-then-prune) hold `lock`
    around the whole sequence; it is re-entrant.

    No business rules live here.
    """

    def __init__(self) -> None:
        self.lock = RLock()
        self._alerts: Dict[str, dict] = {}
        self._by_fingerprint: Dict[str, str] = {}
        self._by_rule: Dict[str, Dict[str, None]] = {}
        self._seq = 0

    def __len__(self) -> int:
        with self.lock:
            return len(self._alerts)

    def get(self, alert_id: str) -> Optional[dict]:
        with self.lock:
            return self._alerts.get(alert_id)

    def put(self, doc: dict) -> None:
        """Insert a record, pointing its fingerprint at it and adding it to its rule's set."""
        with self.lock:
            alert_id = doc["id"]
            if alert_id in self._alerts:
                self.remove(alert_id)

            self._seq += 1
            doc["seq"] = self._seq
            self._alerts[alert_id] = doc

            fingerprint = doc.get("fingerprint")
            if fingerprint:
                self._by_fingerprint[fingerprint] = alert_id

            rule_id = doc.get("ruleId")
            if rule_id:
                self._by_rule.setdefault(rule_id, {})[alert_id] = None

    def remove(self, alert_id: str) -> Optional[dict]:
        """Drop a record from the store and both indices. Returns the removed record, if any."""
        with self.lock:
            doc = self._alerts.pop(alert_id, None)
            if doc is None:
                return None

            # A newer alert may own the fingerprint by now; leave its mapping alone.
            fingerprint = doc.get("fingerprint")
            if fingerprint and self._by_fingerprint.get(fingerprint) == alert_id:
                del self._by_fingerprint[fingerprint]

            rule_id = doc.get("ruleId")
            if rule_id:
                members = self._by_rule.get(rule_id)
                if members is not None:
                    members.pop(alert_id, None)
                    if not members:
                        del self._by_rule[rule_id]
            return doc

    def find_by_fingerprint(self, fingerprint: str) -> Optional[dict]:
        with self.lock:
            alert_id = self._by_fingerprint.get(fingerprint)
            if alert_id is None:
                return None
            return self._alerts.get(alert_id)

    def rule_members(self, rule_id: str) -> List[dict]:
        """Records indexed under a rule, in insertion order."""
        with self.lock:
            ids = self._by_rule.get(rule_id) or {}
            return [self._alerts[i] for i in ids if i in self._alerts]

    def rule_size(self, rule_id: str) -> int:
        with self.lock:
            return len(self._by_rule.get(rule_id) or {})

    def values(self) -> List[dict]:
        with self.lock:
            return list(self._alerts.values())

    def consistency_errors(self) -> List[str]:
        """Describe every index entry that does not point at a stored record (empty when consistent)."""
        errors: List[str] = []
        with self.lock:
            for fingerprint, alert_id in self._by_fingerprint.items():
                doc = self._alerts.get(alert_id)
                if doc is None:
                    errors.append(f"fingerprint {fingerprint} -> missing alert {alert_id}")
                elif doc.get("fingerprint") != fingerprint:
                    errors.append(f"fingerprint {fingerprint} -> alert {alert_id} with another fingerprint")
            for rule_id, members in self._by_rule.items():
                for alert_id in members:
                    doc = self._alerts.get(alert_id)
                    if doc is None:
                        errors.append(f"rule {rule_id} -> missing alert {alert_id}")
                    elif doc.get("ruleId") != rule_id:
                        errors.append(f"rule {rule_id} -> alert {alert_id} of rule {doc.get('ruleId')}")
        return errors
