"""
Разбор файла с рейсами.

Первая строка первого листа: заголовки. Одна строка = один пункт маршрута
(погрузка P или разгрузка D) для пары (телефон водителя, идентификатор рейса).
Если файл не читается как .xlsx, пробуем CSV с разделителем ; , или табуляцией.
"""
from __future__ import annotations

import csv
import datetime as dt
import io
import logging
import zipfile
from dataclasses import dataclass, field

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .users import normalize_phone

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = (
    "phone",
    "trip_identifier",
    "vehicle_number",
    "planned_loading_time",
    "point_type",
    "point_num",
    "point_id",
    "driver_comment",
)


@dataclass
class SheetRow:
    row_num: int
    phone: str
    trip_identifier: str
    vehicle_number: str
    planned_loading_time: str
    point_type: str
    point_num: int
    point_id: str
    driver_comment: str


@dataclass
class PointRef:
    point_id: str
    point_num: int


@dataclass
class TripData:
    phone: str
    trip_identifier: str
    vehicle_number: str = ""
    planned_loading_time: str = ""
    driver_comment: str = ""
    loading_points: list[PointRef] = field(default_factory=list)
    unloading_points: list[PointRef] = field(default_factory=list)

    @property
    def point_ids(self) -> list[str]:
        return [p.point_id for p in self.loading_points + self.unloading_points]


def _cell_to_str(value) -> str:
    if value is None:
        return ""
    if isinstance(value, dt.datetime):
        return value.strftime("%d.%m.%Y %H:%M")
    if isinstance(value, dt.date):
        return value.strftime("%d.%m.%Y")
    if isinstance(value, float) and value.is_integer():
        # телефоны и коды пунктов из Excel приходят как 79990000000.0
        return str(int(value))
    return str(value).strip()


def _read_xlsx(content: bytes) -> list[list]:
    wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0] if wb.worksheets else None
        if ws is None:
            raise ValueError("Файл не содержит листов")
        return [list(r) for r in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def _read_csv(content: bytes) -> list[list]:
    text = content.decode("utf-8-sig", errors="replace")
    first_line = text.splitlines()[0] if text.strip() else ""
    delimiter = "\t" if "\t" in first_line else (";" if ";" in first_line else ",")
    return [row for row in csv.reader(io.StringIO(text), delimiter=delimiter)]


def read_table(content: bytes) -> list[list]:
    if not content:
        raise ValueError("Файл пустой")
    try:
        return _read_xlsx(content)
    except (InvalidFileException, zipfile.BadZipFile, KeyError):
        logger.info("Not an xlsx workbook, falling back to CSV")
        return _read_csv(content)


def parse_rows(table: list[list]) -> tuple[list[SheetRow], list[str]]:
    """Таблица → валидные строки + список ошибок по строкам."""
    if not table:
        raise ValueError("Файл пустой")

    headers = [_cell_to_str(h).lower() for h in table[0]]
    missing = [c for c in REQUIRED_COLUMNS if c not in headers]
    if missing:
        raise ValueError(f"Отсутствуют обязательные колонки: {', '.join(missing)}")
    idx = {c: headers.index(c) for c in REQUIRED_COLUMNS}

    rows: list[SheetRow] = []
    errors: list[str] = []

    for offset, raw in enumerate(table[1:]):
        row_num = offset + 2
        cells = [_cell_to_str(c) for c in raw]
        if not any(cells):
            continue

        def get(col: str) -> str:
            i = idx[col]
            return cells[i] if i < len(cells) else ""

        phone = normalize_phone(get("phone"))
        trip_identifier = get("trip_identifier")
        point_id = get("point_id").upper()
        point_type = get("point_type").upper() or "P"

        if not phone:
            errors.append(f"Строка {row_num}: отсутствует номер телефона")
            continue
        if not trip_identifier:
            errors.append(f"Строка {row_num}: отсутствует идентификатор рейса")
            continue
        if not point_id:
            errors.append(f"Строка {row_num}: отсутствует ID пункта")
            continue
        if point_type not in ("P", "D"):
            errors.append(f'Строка {row_num}: неверный тип пункта "{point_type}" (должен быть P или D)')
            continue

        raw_num = get("point_num")
        try:
            point_num = int(float(raw_num)) if raw_num else 0
        except (ValueError, OverflowError):
            errors.append(f'Строка {row_num}: неверный номер пункта "{raw_num}"')
            continue

        rows.append(SheetRow(
            row_num=row_num,
            phone=phone,
            trip_identifier=trip_identifier,
            vehicle_number=get("vehicle_number"),
            planned_loading_time=get("planned_loading_time"),
            point_type=point_type,
            point_num=point_num,
            point_id=point_id,
            driver_comment=get("driver_comment"),
        ))

    return rows, errors


def group_by_phone(rows: list[SheetRow]) -> dict[str, dict[str, TripData]]:
    """
    phone -> trip_identifier -> TripData.
    Порядок телефонов и рейсов как в файле; пункты сортируются по point_num внутри типа.
    """
    grouped: dict[str, dict[str, TripData]] = {}
    for r in rows:
        trips = grouped.setdefault(r.phone, {})
        td = trips.get(r.trip_identifier)
        if td is None:
            td = trips[r.trip_identifier] = TripData(
                phone=r.phone,
                trip_identifier=r.trip_identifier,
                vehicle_number=r.vehicle_number,
                planned_loading_time=r.planned_loading_time,
                driver_comment=r.driver_comment,
            )
        ref = PointRef(point_id=r.point_id, point_num=r.point_num)
        (td.loading_points if r.point_type == "P" else td.unloading_points).append(ref)

    for trips in grouped.values():
        for td in trips.values():
            td.loading_points.sort(key=lambda p: p.point_num)
            td.unloading_points.sort(key=lambda p: p.point_num)
    return grouped


def parse_upload(content: bytes) -> tuple[dict[str, dict[str, TripData]], list[str], int]:
    """Байты файла → (группы, ошибки валидации, число непустых строк данных)."""
    table = read_table(content)
    rows, errors = parse_rows(table)
    return group_by_phone(rows), errors, len(rows) + len(errors)
