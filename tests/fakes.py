"""In-memory stand-ins for the Drive v3 / Sheets v4 REST surface."""
from __future__ import annotations

import json
import re
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple, Union
from urllib.parse import unquote, urlsplit

import aiohttp
from apscheduler.jobstores.base import JobLookupError

RANGE_RE = re.compile(r'^([A-Z]+)(\d+)?:([A-Z]+)(\d+)?$')
NAME_RE = re.compile(r"name='((?:[^'\\]|\\.)*)'")
MIME_RE = re.compile(r"mimeType='([^']+)'")
PARENT_RE = re.compile(r"'((?:[^'\\]|\\.)*)' in parents")

SPREADSHEET_MIME = 'application/vnd.google-apps.spreadsheet'


def letter_to_index(letters: str) -> int:
    index = 0
    for char in letters:
        index = index * 26 + (ord(char) - ord('A') + 1)
    return index - 1


def _unescape(value: str) -> str:
    return value.replace("\\'", "'").replace('\\\\', '\\')


def _trim(row: List[str]) -> List[str]:
    row = list(row)
    while row and row[-1] == "":
        row.pop()
    return row


class FakeResponse:
    def __init__(self, status: int, body: Any = None):
        self.status = status
        if body is None:
            self._text = ""
        elif isinstance(body, str):
            self._text = body
        else:
            self._text = json.dumps(body)

    async def text(self) -> str:
        return self._text

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeGoogleApi:
    """Files, folders and spreadsheet grids kept in dictionaries."""

    def __init__(self, token: str = "test-token"):
        self.token = token
        self.files: Dict[str, Dict[str, Any]] = {}
        self.grids: Dict[str, List[List[str]]] = {}
        self.requests: List[Tuple[str, str, Dict[str, Any]]] = []
        self.queued: Deque[Union[int, BaseException]] = deque()
        self.drive_list_status: Optional[int] = None
        self._next_id = 0

    # ----- test controls -----

    def fail_next(self, *outcomes: Union[int, BaseException]):
        """Queue statuses or exceptions returned before normal routing."""
        self.queued.extend(outcomes)

    def add_file(self, name: str, mime_type: str, parent: str = 'root') -> str:
        self._next_id += 1
        file_id = f"file_{self._next_id}"
        self.files[file_id] = {'id': file_id, 'name': name, 'mimeType': mime_type, 'parents': [parent]}
        if mime_type == SPREADSHEET_MIME:
            self.grids[file_id] = []
        return file_id

    def rows(self, spreadsheet_id: str) -> List[List[str]]:
        """Data rows without the header."""
        return [list(row) for row in self.grids[spreadsheet_id][1:]]

    def header(self, spreadsheet_id: str) -> List[str]:
        grid = self.grids[spreadsheet_id]
        return list(grid[0]) if grid else []

    def count(self, method: str, fragment: str) -> int:
        return sum(1 for m, path, _ in self.requests if m == method and fragment in path)

    # ----- routing -----

    def handle(self, method: str, url: str, headers: Dict[str, str],
               params: Optional[Dict[str, Any]], payload: Any) -> FakeResponse:
        path = unquote(urlsplit(url).path)
        self.requests.append((method, path, dict(params or {})))

        if self.queued:
            outcome = self.queued.popleft()
            if isinstance(outcome, BaseException):
                raise outcome
            return FakeResponse(outcome, {'error': {'code': outcome}})

        if headers.get('Authorization') != f"Bearer {self.token}":
            return FakeResponse(401, {'error': {'code': 401}})

        if path.endswith('/drive/v3/files'):
            if method == 'GET':
                return self._list_files(params or {})
            return self._create_file(payload)

        match = re.match(r'^/v4/spreadsheets/([^/:]+):batchUpdate$', path)
        if match:
            return self._batch_update(match.group(1), payload)

        match = re.match(r'^/v4/spreadsheets/([^/]+)/values/(.+)$', path)
        if match:
            spreadsheet_id, cell_range = match.groups()
            if spreadsheet_id not in self.grids:
                return FakeResponse(404, {'error': {'code': 404}})
            if cell_range.endswith(':append'):
                return self._append(spreadsheet_id, payload)
            if method == 'GET':
                return self._read(spreadsheet_id, cell_range)
            return self._write(spreadsheet_id, cell_range, payload)

        return FakeResponse(404, {'error': {'code': 404}})

    def _list_files(self, params: Dict[str, Any]) -> FakeResponse:
        if self.drive_list_status is not None:
            return FakeResponse(self.drive_list_status, {'error': {}})
        query = params.get('q', '')
        name = _unescape(NAME_RE.search(query).group(1))
        mime_type = MIME_RE.search(query).group(1)
        parent = _unescape(PARENT_RE.search(query).group(1))
        files = [
            {'id': f['id'], 'name': f['name']}
            for f in self.files.values()
            if f['name'] == name and f['mimeType'] == mime_type and parent in f['parents']
        ]
        return FakeResponse(200, {'files': files})

    def _create_file(self, payload: Dict[str, Any]) -> FakeResponse:
        parents = payload.get('parents') or ['root']
        file_id = self.add_file(payload['name'], payload['mimeType'], parents[0])
        return FakeResponse(200, {'id': file_id, 'name': payload['name']})

    def _read(self, spreadsheet_id: str, cell_range: str) -> FakeResponse:
        start_col, start_row, end_col, _ = RANGE_RE.match(cell_range).groups()
        first, last = letter_to_index(start_col), letter_to_index(end_col)
        grid = self.grids[spreadsheet_id]
        values = [_trim(row[first:last + 1]) for row in grid[int(start_row or 1) - 1:]]
        while values and not values[-1]:
            values.pop()
        body: Dict[str, Any] = {'range': cell_range, 'majorDimension': 'ROWS'}
        if values:
            body['values'] = values
        return FakeResponse(200, body)

    def _write(self, spreadsheet_id: str, cell_range: str, payload: Dict[str, Any]) -> FakeResponse:
        _, start_row, _, _ = RANGE_RE.match(cell_range).groups()
        grid = self.grids[spreadsheet_id]
        row_number = int(start_row)
        while len(grid) < row_number:
            grid.append([])
        grid[row_number - 1] = [str(cell) for cell in payload['values'][0]]
        return FakeResponse(200, {'updatedRows': 1})

    def _append(self, spreadsheet_id: str, payload: Dict[str, Any]) -> FakeResponse:
        grid = self.grids[spreadsheet_id]
        if not grid:
            grid.append([])
        grid.append([str(cell) for cell in payload['values'][0]])
        return FakeResponse(200, {'updates': {'updatedRows': 1}})

    def _batch_update(self, spreadsheet_id: str, payload: Dict[str, Any]) -> FakeResponse:
        grid = self.grids[spreadsheet_id]
        for request in payload['requests']:
            dimension = request['deleteDimension']['range']
            del grid[dimension['startIndex']:dimension['endIndex']]
        return FakeResponse(200, {'replies': [{}]})


class FakeSession:
    """Just enough of aiohttp.ClientSession for RateLimitedClient."""

    def __init__(self, api: FakeGoogleApi):
        self.api = api
        self.closed = False

    def request(self, method: str, url: str, headers=None, params=None, json=None):
        return self.api.handle(method, url, headers or {}, params, json)

    async def close(self):
        self.closed = True


def connection_error() -> aiohttp.ClientConnectionError:
    return aiohttp.ClientConnectionError("connection reset")


class FakeJobScheduler:
    """Records APScheduler jobs instead of running them."""

    def __init__(self):
        self.running = False
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.added: List[str] = []

    def start(self):
        self.running = True

    def shutdown(self, wait: bool = True):
        self.running = False

    def add_job(self, func, trigger=None, id=None, replace_existing=False, **kwargs):
        self.jobs[id] = {'func': func, 'trigger': trigger, **kwargs}
        self.added.append(id)

    def remove_job(self, job_id: str):
        if job_id not in self.jobs:
            raise JobLookupError(job_id)
        del self.jobs[job_id]
