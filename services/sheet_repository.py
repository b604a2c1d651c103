# services/sheet_repository.py

"""
Хранилище привычек в Google Sheets.

Структура на Диске: <root>/<sub>/<год>/<prefix>_<месяц>_<год>. Любой
недостающий уровень создаётся, заголовок пишется только в только что
созданную таблицу. Строки адресуются по номеру (0 - первая строка
после заголовка); номер не стабилен, стабилен только id в колонке A.
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from config import GoogleConfig, HttpConfig
from core.auth import TokenProvider
from core.exceptions import AuthExpiredError, AuthRequiredError, RemoteError
from services.http_client import RateLimitedClient
from services.sheet_layout import COLUMNS, HEADER, LAST_COLUMN, column_letter

logger = logging.getLogger(__name__)

FOLDER_MIME = 'application/vnd.google-apps.folder'
SPREADSHEET_MIME = 'application/vnd.google-apps.spreadsheet'
FIRST_SHEET_ID = 0


def _escape_query(value: str) -> str:
    return value.replace('\\', '\\\\').replace("'", "\\'")


class SheetRepository:
    """CRUD строк привычек поверх Drive v3 и Sheets v4"""

    def __init__(self, client: RateLimitedClient, token_provider: TokenProvider,
                 google_config: GoogleConfig, http_config: HttpConfig,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 today: Callable[[], date] = date.today):
        self.client = client
        self.token_provider = token_provider
        self.google = google_config
        self.request_delay = http_config.request_delay
        self.sleep = sleep
        self.today = today
        self._spreadsheet_id: Optional[str] = None
        self._spreadsheet_month: Optional[date] = None
        self._setup_lock = asyncio.Lock()

    # ===== СВОЙСТВА =====

    @property
    def month(self) -> date:
        """Первое число текущего месяца"""
        return self.today().replace(day=1)

    @property
    def spreadsheet_id(self) -> Optional[str]:
        if self._spreadsheet_month != self.month:
            return None
        return self._spreadsheet_id

    def set_spreadsheet_id(self, spreadsheet_id: Optional[str]):
        """Подставить известный id (например, из кэша) без обращения к Диску"""
        self._spreadsheet_id = spreadsheet_id
        self._spreadsheet_month = self.month if spreadsheet_id else None

    @property
    def spreadsheet_name(self) -> str:
        month = self.month
        return f"{self.google.spreadsheet_prefix}_{month.month}_{month.year}"

    # ===== ЗАПРОСЫ =====

    async def _call(self, method: str, url: str, **kwargs) -> Any:
        # Пауза перед каждым запросом держит нас ниже квоты на всплески
        if self.request_delay > 0:
            await self.sleep(self.request_delay)
        token = await self.token_provider.get_token()
        return await self.client.request(method, url, token, **kwargs)

    def _values_url(self, spreadsheet_id: str, cell_range: str) -> str:
        return f"{self.google.sheets_api_url}/spreadsheets/{spreadsheet_id}/values/{cell_range}"

    # ===== СТРУКТУРА НА ДИСКЕ =====

    async def _find_file(self, name: str, mime_type: str, parent_id: str) -> Optional[str]:
        query = (
            f"name='{_escape_query(name)}' and mimeType='{mime_type}' "
            f"and trashed=false and '{_escape_query(parent_id)}' in parents"
        )
        response = await self._call(
            'GET', f"{self.google.drive_api_url}/files",
            params={'q': query, 'fields': 'files(id,name)', 'spaces': 'drive'}
        )
        files = response.get('files') if isinstance(response, dict) else None
        if not isinstance(files, list):
            raise RemoteError(200, response, "Некорректный ответ Drive API на поиск файла")
        return files[0].get('id') if files else None

    async def _create_file(self, name: str, mime_type: str, parent_id: Optional[str]) -> str:
        body = {'name': name, 'mimeType': mime_type}
        if parent_id:
            body['parents'] = [parent_id]
        response = await self._call('POST', f"{self.google.drive_api_url}/files", json=body)
        file_id = response.get('id') if isinstance(response, dict) else None
        if not file_id:
            raise RemoteError(200, response, f"Drive API не вернул id для {name}")
        logger.info(f"📁 Создан {'каталог' if mime_type == FOLDER_MIME else 'файл'} {name}")
        return file_id

    async def _find_or_create(self, name: str, mime_type: str, parent_id: str) -> Tuple[str, bool]:
        file_id = await self._find_file(name, mime_type, parent_id)
        if file_id:
            return file_id, False
        return await self._create_file(name, mime_type, parent_id), True

    async def _write_header(self, spreadsheet_id: str):
        cell_range = f"A1:{LAST_COLUMN}1"
        await self._call(
            'PUT', self._values_url(spreadsheet_id, cell_range),
            params={'valueInputOption': 'RAW'},
            json={'values': [HEADER]}
        )
        logger.info(f"📝 Заголовок записан в таблицу {spreadsheet_id}")

    async def _setup_in_folders(self) -> str:
        month = self.month
        parent = 'root'
        for folder_name in (self.google.root_folder, self.google.sub_folder, str(month.year)):
            parent, _ = await self._find_or_create(folder_name, FOLDER_MIME, parent)

        spreadsheet_id, created = await self._find_or_create(self.spreadsheet_name, SPREADSHEET_MIME, parent)
        if created:
            await self._write_header(spreadsheet_id)
        return spreadsheet_id

    async def _setup_unfoldered(self) -> str:
        name = f"{self.spreadsheet_name}_{datetime.now():%Y%m%d%H%M%S}"
        spreadsheet_id = await self._create_file(name, SPREADSHEET_MIME, None)
        await self._write_header(spreadsheet_id)
        return spreadsheet_id

    async def setup_drive(self, force: bool = False) -> str:
        """Найти или создать таблицу текущего месяца и вернуть её id"""
        async with self._setup_lock:
            if not force and self.spreadsheet_id:
                return self.spreadsheet_id

            try:
                spreadsheet_id = await self._setup_in_folders()
            except (AuthRequiredError, AuthExpiredError):
                raise
            except RemoteError as e:
                logger.error(f"❌ Не удалось подготовить каталоги на Диске: {e}. Создаём таблицу без каталога")
                spreadsheet_id = await self._setup_unfoldered()

            self.set_spreadsheet_id(spreadsheet_id)
            logger.info(f"✅ Таблица привычек готова: {spreadsheet_id}")
            return spreadsheet_id

    async def _ensure_spreadsheet(self) -> str:
        return self.spreadsheet_id or await self.setup_drive()

    # ===== СТРОКИ =====

    async def fetch_rows(self) -> List[List[str]]:
        """Все строки данных без заголовка.

        Пустой диапазон и ответ неожиданной формы дают []; ошибки
        авторизации и сети пробрасываются.
        """
        spreadsheet_id = await self._ensure_spreadsheet()
        response = await self._call('GET', self._values_url(spreadsheet_id, f"A2:{LAST_COLUMN}"))

        if not isinstance(response, dict):
            logger.warning("⚠️ Некорректный ответ Sheets API на чтение строк")
            return []
        values = response.get('values')
        if values is None:
            return []
        if not isinstance(values, list):
            logger.warning("⚠️ Поле values в ответе Sheets API не является списком")
            return []

        rows = []
        for row in values:
            if not isinstance(row, list):
                rows.append([])
                continue
            rows.append(["" if cell is None else str(cell) for cell in row])
        return rows

    async def append_row(self, row: List[str]):
        spreadsheet_id = await self._ensure_spreadsheet()
        await self._call(
            'POST', self._values_url(spreadsheet_id, f"A2:{LAST_COLUMN}2:append"),
            params={'valueInputOption': 'RAW', 'insertDataOption': 'INSERT_ROWS'},
            json={'values': [row]}
        )

    async def update_row(self, row_index: int, row: List[str]):
        if row_index < 0:
            raise ValueError(f"Некорректный номер строки: {row_index}")
        spreadsheet_id = await self._ensure_spreadsheet()
        sheet_row = row_index + 2
        await self._call(
            'PUT', self._values_url(spreadsheet_id, f"A{sheet_row}:{LAST_COLUMN}{sheet_row}"),
            params={'valueInputOption': 'RAW'},
            json={'values': [row]}
        )

    async def delete_row(self, row_index: int):
        """Удалить строку; все последующие сдвигаются на одну вверх"""
        if row_index < 0:
            raise ValueError(f"Некорректный номер строки: {row_index}")
        spreadsheet_id = await self._ensure_spreadsheet()
        await self._call(
            'POST', f"{self.google.sheets_api_url}/spreadsheets/{spreadsheet_id}:batchUpdate",
            json={'requests': [{
                'deleteDimension': {
                    'range': {
                        'sheetId': FIRST_SHEET_ID,
                        'dimension': 'ROWS',
                        'startIndex': row_index + 1,
                        'endIndex': row_index + 2
                    }
                }
            }]}
        )

    async def find_row_index(self, column: str, value: str) -> int:
        """Номер первой строки, где в колонке value, или -1.

        column - имя из заголовка ('id') или буква колонки ('A').
        """
        letter = column_letter(COLUMNS[column]) if column in COLUMNS else column
        spreadsheet_id = await self._ensure_spreadsheet()
        response = await self._call('GET', self._values_url(spreadsheet_id, f"{letter}2:{letter}"))

        values = response.get('values') if isinstance(response, dict) else None
        if not isinstance(values, list):
            return -1
        for index, row in enumerate(values):
            if isinstance(row, list) and row and str(row[0]) == value:
                return index
        return -1
