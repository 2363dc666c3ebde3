"""
Repository rule lookups used by the `show` query.

A lookup takes canonical repository names and returns their rule attributes.
Any failure surfaces as GraphEvaluationError.
"""
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

import requests

from modquery.errors import GraphEvaluationError
from modquery.graph.model import Snapshot

# repo names -> {repo name: rule attributes}
RepoRuleLookup = Callable[[Sequence[str]], Mapping[str, Mapping[str, Any]]]


class SnapshotRepoRuleLookup:
    """Lookup backed by the snapshot's repo_rules section."""

    def __init__(self, snapshot: Snapshot):
        self.snapshot = snapshot

    def __call__(self, repo_names: Sequence[str]) -> Mapping[str, Mapping[str, Any]]:
        missing = [name for name in repo_names if name not in self.snapshot.repo_rules]
        if missing:
            raise GraphEvaluationError(
                f"No repository rule found for: {', '.join('@' + name for name in missing)}"
            )
        return {name: self.snapshot.repo_rules[name] for name in repo_names}


class HttpRepoRuleLookup:
    """Lookup that asks a repository rule service over HTTP."""

    def __init__(self, api_url: str, token: Optional[str] = None, timeout: float = 30.0):
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({'Content-Type': 'application/json'})
        if token:
            self.session.headers.update({'Authorization': f'Bearer {token}'})

    def _post(self, path: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Make POST request to the service."""
        url = f"{self.api_url}{path}"
        response = self.session.post(url, json=data, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def __call__(self, repo_names: Sequence[str]) -> Mapping[str, Mapping[str, Any]]:
        try:
            data = self._post('/v1/repo_rules', {'repos': list(repo_names)})
        except requests.exceptions.RequestException as e:
            raise GraphEvaluationError(f"Repository rule lookup failed: {e}") from e
        except ValueError as e:
            raise GraphEvaluationError(f"Repository rule service returned invalid JSON: {e}") from e

        rules = data.get('rules', {}) if isinstance(data, dict) else {}
        missing = [name for name in repo_names if name not in rules]
        if missing:
            raise GraphEvaluationError(
                f"No repository rule found for: {', '.join('@' + name for name in missing)}"
            )
        return {name: rules[name] for name in repo_names}
