"""
Partner import from CSV or Excel spreadsheets.

Column headers are matched loosely (case, accents and a few French and
English aliases) so exports from common tools load without editing.
"""
import csv
import io
import logging
import unicodedata
from dataclasses import dataclass, field
from typing import List, Dict, Any

import pandas as pd

from ..utils.exceptions import ProHealthError, ValidationError
from .partner_service import PartnerService, clean_email, clean_text, split_name
from .promo_codes import normalize_code
from .settings_service import settings_service

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = ('.xlsx', '.xls')

COLUMN_ALIASES = {
    'ref': ('ref interne', 'ref', 'reference', 'id', 'identification'),
    'first_name': ('prenom', 'first name', 'firstname'),
    'last_name': ('nom', 'name', 'last name', 'lastname'),
    'full_name': ('prenom nom', 'nom complet', 'full name'),
    'email': ('email', 'e-mail', 'mail', 'courriel'),
    'code': ('code', 'code promo', 'promo'),
    'amount': ('montant', 'amount', 'valeur'),
    'type': ('type',),
    'profession': ('profession', 'job', 'metier'),
    'address': ('adresse', 'address', 'ville'),
}


def normalize_key(key) -> str:
    """Lowercase, trimmed, accents stripped."""
    text = unicodedata.normalize('NFD', str(key or '').strip().lower())
    return ''.join(c for c in text if unicodedata.category(c) != 'Mn')


def repair_mojibake(value: str) -> str:
    """Undo UTF-8 text that was decoded as Latin-1 ('Ã©' -> 'é')."""
    if 'Ã' not in value and 'Â' not in value:
        return value
    try:
        return value.encode('latin-1').decode('utf-8')
    except (UnicodeEncodeError, UnicodeDecodeError):
        return value


def clean_input(value) -> str:
    if value is None:
        return ''
    return clean_text(repair_mojibake(str(value)))


def parse_type(value: str) -> str:
    value = (value or '').lower()
    if '€' in value or 'eur' in value:
        return '€'
    return '%'


@dataclass
class ImportReport:
    """Summary of one import run."""
    added: int = 0
    skipped: int = 0
    duplicates: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'added': self.added,
            'skipped': self.skipped,
            'duplicates': self.duplicates,
            'errors': self.errors,
        }


def read_rows(content: bytes, filename: str) -> List[Dict[str, str]]:
    """
    Decode an uploaded spreadsheet into a list of row dicts.

    Raises:
        ValidationError: unreadable file
    """
    if (filename or '').lower().endswith(EXCEL_EXTENSIONS):
        try:
            df = pd.read_excel(io.BytesIO(content), dtype=str)
        except Exception as e:
            raise ValidationError(f'Could not read Excel file: {e}', 'file') from e
        df = df.fillna('')
        return df.to_dict(orient='records')

    try:
        text = content.decode('utf-8-sig')
    except UnicodeDecodeError:
        text = content.decode('latin-1')

    header = text.split('\n', 1)[0]
    delimiter = ';' if header.count(';') > header.count(',') else ','
    reader = csv.DictReader(io.StringIO(text), delimiter=delimiter)
    return [dict(row) for row in reader]


def map_row(row: Dict[str, Any]) -> Dict[str, str]:
    """Pick the known columns out of a raw row using the alias table."""
    normalized = {normalize_key(k): clean_input(v) for k, v in row.items() if k is not None}
    mapped = {}
    for target, aliases in COLUMN_ALIASES.items():
        mapped[target] = next((normalized[a] for a in aliases if normalized.get(a)), '')

    if mapped['full_name'] and not (mapped['first_name'] or mapped['last_name']):
        mapped['first_name'], mapped['last_name'] = split_name(mapped['full_name'])

    mapped['email'] = clean_email(mapped['email'])
    mapped['code'] = normalize_code(mapped['code'])
    mapped['amount'] = mapped['amount'].replace(',', '.').replace('%', '').replace('€', '').strip()
    mapped['type'] = parse_type(mapped['type'] or row_text(row))
    mapped['blank'] = not any(normalized.values())
    return mapped


def row_text(row: Dict[str, Any]) -> str:
    """A currency hint can sit in the amount cell itself ('10 €')."""
    return ' '.join(str(v) for k, v in row.items() if normalize_key(k) in COLUMN_ALIASES['amount'])


class ImportService:
    """Creates partners row by row from an uploaded file."""

    def __init__(self, shop, client):
        self.shop = shop
        self.partners = PartnerService(client)

    def import_file(self, content: bytes, filename: str) -> ImportReport:
        rows = read_rows(content, filename)
        return self.import_rows(rows)

    def import_rows(self, rows: List[Dict[str, Any]]) -> ImportReport:
        """
        Import already-decoded rows sequentially.

        Blank rows are ignored. Rows with a code or reference already
        present (in the shop or earlier in the file) are skipped and listed
        under duplicates. Anything else that fails is listed under errors.
        """
        report = ImportReport()
        defaults = settings_service.get_validation_defaults(self.shop)
        partners = self.partners.list_partners()
        seen_codes = self.partners.existing_codes(partners)
        seen_refs = {p.identification.upper() for p in partners if p.identification}

        for index, raw in enumerate(rows):
            line = index + 2  # header is line 1
            row = map_row(raw)
            if row['blank']:
                continue
            if not row['ref']:
                report.errors.append(f'Line {line}: missing reference')
                continue
            missing = [label for label, value in (
                ('name', row['first_name'] or row['last_name']),
                ('email', row['email']),
                ('code', row['code']),
            ) if not value]
            if missing:
                report.errors.append(f"Line {line} ({row['ref']}): missing {', '.join(missing)}")
                continue

            if row['code'] in seen_codes or row['ref'].upper() in seen_refs:
                report.skipped += 1
                report.duplicates.append(f"{row['ref']} / {row['code']}")
                continue

            try:
                partner = self.partners.create_partner({
                    'identification': row['ref'],
                    'first_name': row['first_name'],
                    'last_name': row['last_name'],
                    'email': row['email'],
                    'code': row['code'],
                    'montant': row['amount'] or defaults['value'],
                    'type': row['type'],
                    'profession': row['profession'],
                    'adresse': row['address'],
                }, partners=partners)
            except ProHealthError as e:
                report.errors.append(f"Line {line} ({row['ref']}): {e.message}")
                continue

            partners.append(partner)
            seen_codes.add(partner.normalized_code)
            seen_refs.add(row['ref'].upper())
            report.added += 1

        logger.info(
            f'Import for {self.shop.shop_domain}: {report.added} added, '
            f'{report.skipped} skipped, {len(report.errors)} errors'
        )
        return report
