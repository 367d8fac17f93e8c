#!/usr/bin/env python3
"""
Randomized Value Service
Faker backed generation of replacement values by masking type/sub type or by
SQL data type, with length/range bounds, format masks and shuffling.
"""

import logging
import random
import re
import string
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

import faker
from faker.providers import BaseProvider

from .literals import (
    BINARY_TYPES, DATE_TYPES, DECIMAL_TYPES, GUID_TYPES, INTEGER_RANGES,
    INTEGER_TYPES, STRING_TYPES, base_type
)


DEFAULT_CHARACTER_STRING = string.ascii_letters + string.digits
DEFAULT_MAX_WIDTH = 10
DEFAULT_DATE_WINDOW_DAYS = 365

_PRECISION = re.compile(r'\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\)')


class MaskingFakerProvider(BaseProvider):
    """Custom Faker provider for values Faker does not ship."""

    def account_number(self) -> str:
        return str(self.generator.random.randint(10000000, 99999999))

    def hexadecimal(self, length: int = 16) -> str:
        return ''.join(self.generator.random.choices('0123456789abcdef', k=length))


def _date_bounds(min_value: Any, max_value: Any, default_past: bool = True, default_future: bool = True) -> Tuple[datetime, datetime]:
    now = datetime.now()
    low = to_datetime(min_value) if min_value is not None else (
        now - timedelta(days=DEFAULT_DATE_WINDOW_DAYS) if default_past else now)
    high = to_datetime(max_value) if max_value is not None else (
        now + timedelta(days=DEFAULT_DATE_WINDOW_DAYS) if default_future else now)
    if low > high:
        low, high = high, low
    return low, high


def to_datetime(value: Any) -> datetime:
    """Accept datetime/date/ISO strings for date bounds."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    return datetime.fromisoformat(str(value).strip())


def _int_bound(value: Any, default: int) -> int:
    return default if value is None else int(Decimal(str(value)))


class RandomizedValueService:
    """
    Randomized value generator used by the masking executor.

    Features:
    - Masking type / sub type catalog backed by Faker
    - Type driven generation for SQL Server data types
    - Length and range bounds, character sets and format masks
    - Shuffle of existing values
    """

    def __init__(
        self,
        locale: str = "en_US",
        character_string: str = DEFAULT_CHARACTER_STRING,
        seed: Optional[int] = None
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.fake = faker.Faker(locale)
        self.fake.add_provider(MaskingFakerProvider)
        self.random = random.Random(seed)
        if seed is not None:
            self.fake.seed_instance(seed)
        self.character_string = character_string or DEFAULT_CHARACTER_STRING

        self.generation_count = 0
        self._generators = self._build_generators()

    def _build_generators(self) -> Dict[str, Dict[str, Callable[..., Any]]]:
        """Masking type -> sub type -> generator(min, max, sep)."""
        fake = self.fake

        def between(mn, mx):
            low, high = _date_bounds(mn, mx)
            return fake.date_time_between(start_date=low, end_date=high)

        def past(mn, mx):
            low, high = _date_bounds(mn, mx, default_future=False)
            return fake.date_time_between(start_date=low, end_date=min(high, datetime.now()))

        def future(mn, mx):
            low, high = _date_bounds(mn, mx, default_past=False)
            return fake.date_time_between(start_date=max(low, datetime.now()), end_date=high)

        def number(mn, mx):
            return self.random.randint(_int_bound(mn, 0), _int_bound(mx, 10 ** DEFAULT_MAX_WIDTH - 1))

        def decimal_number(mn, mx):
            low = float(mn) if mn is not None else 0.0
            high = float(mx) if mx is not None else float(10 ** (DEFAULT_MAX_WIDTH - 2))
            return round(Decimal(str(self.random.uniform(low, high))), 2)

        def random_string(mn, mx, characters=None):
            return self.random_string(_int_bound(mn, 1), _int_bound(mx, DEFAULT_MAX_WIDTH), characters)

        def full_name(mn, mx, sep=' '):
            return f"{fake.first_name()}{sep or ' '}{fake.last_name()}"

        def street_address(mn, mx, sep=None):
            return fake.address().replace('\n', sep or ', ')

        return {
            'address': {
                'buildingnumber': lambda mn, mx, sep=None: fake.building_number(),
                'city': lambda mn, mx, sep=None: fake.city(),
                'country': lambda mn, mx, sep=None: fake.country(),
                'countrycode': lambda mn, mx, sep=None: fake.country_code(),
                'fulladdress': street_address,
                'latitude': lambda mn, mx, sep=None: fake.latitude(),
                'longitude': lambda mn, mx, sep=None: fake.longitude(),
                'secondaryaddress': lambda mn, mx, sep=None: fake.secondary_address() if hasattr(fake, 'secondary_address') else fake.building_number(),
                'state': lambda mn, mx, sep=None: fake.state() if hasattr(fake, 'state') else fake.city(),
                'stateabbr': lambda mn, mx, sep=None: fake.state_abbr() if hasattr(fake, 'state_abbr') else fake.country_code(),
                'streetaddress': lambda mn, mx, sep=None: fake.street_address(),
                'streetname': lambda mn, mx, sep=None: fake.street_name(),
                'zipcode': lambda mn, mx, sep=None: fake.postcode(),
            },
            'commerce': {
                'color': lambda mn, mx, sep=None: fake.color_name(),
                'department': lambda mn, mx, sep=None: fake.word().title(),
                'ean13': lambda mn, mx, sep=None: fake.ean13(),
                'price': lambda mn, mx, sep=None: decimal_number(mn, mx),
                'productname': lambda mn, mx, sep=None: f"{fake.word().title()} {fake.word()}",
            },
            'company': {
                'bs': lambda mn, mx, sep=None: fake.bs(),
                'catchphrase': lambda mn, mx, sep=None: fake.catch_phrase(),
                'companyname': lambda mn, mx, sep=None: fake.company(),
                'companysuffix': lambda mn, mx, sep=None: fake.company_suffix(),
            },
            'date': {
                'between': lambda mn, mx, sep=None: between(mn, mx),
                'birthdate': lambda mn, mx, sep=None: fake.date_of_birth(minimum_age=18, maximum_age=90),
                'future': lambda mn, mx, sep=None: future(mn, mx),
                'month': lambda mn, mx, sep=None: fake.month_name(),
                'past': lambda mn, mx, sep=None: past(mn, mx),
                'recent': lambda mn, mx, sep=None: fake.date_time_between(start_date='-7d', end_date='now'),
                'soon': lambda mn, mx, sep=None: fake.date_time_between(start_date='now', end_date='+7d'),
                'weekday': lambda mn, mx, sep=None: fake.day_of_week(),
            },
            'finance': {
                'account': lambda mn, mx, sep=None: fake.account_number(),
                'amount': lambda mn, mx, sep=None: decimal_number(mn, mx),
                'bic': lambda mn, mx, sep=None: fake.swift(),
                'creditcardcvv': lambda mn, mx, sep=None: fake.credit_card_security_code(),
                'creditcardnumber': lambda mn, mx, sep=None: self._grouped(fake.credit_card_number(), sep),
                'currency': lambda mn, mx, sep=None: fake.currency_name(),
                'currencycode': lambda mn, mx, sep=None: fake.currency_code(),
                'iban': lambda mn, mx, sep=None: self._grouped(fake.iban(), sep),
                'routingnumber': lambda mn, mx, sep=None: fake.aba(),
            },
            'internet': {
                'domainname': lambda mn, mx, sep=None: fake.domain_name(),
                'email': lambda mn, mx, sep=None: fake.email(),
                'exampleemail': lambda mn, mx, sep=None: fake.safe_email(),
                'ip': lambda mn, mx, sep=None: fake.ipv4(),
                'ipv6': lambda mn, mx, sep=None: fake.ipv6(),
                'mac': lambda mn, mx, sep=None: fake.mac_address(),
                'password': lambda mn, mx, sep=None: fake.password(length=max(_int_bound(mx, 12), 4)),
                'url': lambda mn, mx, sep=None: fake.url(),
                'useragent': lambda mn, mx, sep=None: fake.user_agent(),
                'username': lambda mn, mx, sep=None: fake.user_name(),
            },
            'lorem': {
                'letter': lambda mn, mx, sep=None: self.random.choice(string.ascii_lowercase),
                'paragraph': lambda mn, mx, sep=None: fake.paragraph(),
                'sentence': lambda mn, mx, sep=None: fake.sentence(),
                'text': lambda mn, mx, sep=None: fake.text(max_nb_chars=max(_int_bound(mx, 200), 5)),
                'word': lambda mn, mx, sep=None: fake.word(),
                'words': lambda mn, mx, sep=None: (sep or ' ').join(fake.words()),
            },
            'name': {
                'firstname': lambda mn, mx, sep=None: fake.first_name(),
                'firstnamefemale': lambda mn, mx, sep=None: fake.first_name_female(),
                'firstnamemale': lambda mn, mx, sep=None: fake.first_name_male(),
                'fullname': full_name,
                'jobtitle': lambda mn, mx, sep=None: fake.job(),
                'lastname': lambda mn, mx, sep=None: fake.last_name(),
                'prefix': lambda mn, mx, sep=None: fake.prefix(),
                'suffix': lambda mn, mx, sep=None: fake.suffix(),
            },
            'person': {
                'company': lambda mn, mx, sep=None: fake.company(),
                'dateofbirth': lambda mn, mx, sep=None: fake.date_of_birth(minimum_age=18, maximum_age=90),
                'email': lambda mn, mx, sep=None: fake.email(),
                'firstname': lambda mn, mx, sep=None: fake.first_name(),
                'fullname': full_name,
                'lastname': lambda mn, mx, sep=None: fake.last_name(),
                'phone': lambda mn, mx, sep=None: fake.phone_number(),
                'ssn': lambda mn, mx, sep=None: fake.ssn(),
                'username': lambda mn, mx, sep=None: fake.user_name(),
            },
            'phone': {
                'countrycallingcode': lambda mn, mx, sep=None: fake.country_calling_code(),
                'msisdn': lambda mn, mx, sep=None: fake.msisdn(),
                'phonenumber': lambda mn, mx, sep=None: fake.phone_number(),
            },
            'random': {
                'alphanumeric': lambda mn, mx, sep=None: random_string(mn, mx, string.ascii_letters + string.digits),
                'bool': lambda mn, mx, sep=None: self.random.choice([True, False]),
                'decimal': lambda mn, mx, sep=None: decimal_number(mn, mx),
                'double': lambda mn, mx, sep=None: float(decimal_number(mn, mx)),
                'float': lambda mn, mx, sep=None: float(decimal_number(mn, mx)),
                'guid': lambda mn, mx, sep=None: str(uuid.UUID(int=self.random.getrandbits(128), version=4)),
                'hexadecimal': lambda mn, mx, sep=None: fake.hexadecimal(_int_bound(mx, 16)),
                'int': lambda mn, mx, sep=None: number(mn, mx),
                'number': lambda mn, mx, sep=None: number(mn, mx),
                'shuffle': lambda mn, mx, sep=None: random_string(mn, mx),
                'string': lambda mn, mx, sep=None: random_string(mn, mx),
            },
            'system': {
                'fileext': lambda mn, mx, sep=None: fake.file_extension(),
                'filename': lambda mn, mx, sep=None: fake.file_name(),
                'filepath': lambda mn, mx, sep=None: fake.file_path(),
                'mimetype': lambda mn, mx, sep=None: fake.mime_type(),
            },
        }

    @staticmethod
    def _grouped(value: str, separator: Optional[str]) -> str:
        if not separator:
            return value
        compact = re.sub(r'[\s-]', '', value)
        return separator.join(compact[i:i + 4] for i in range(0, len(compact), 4))

    def supported_types(self) -> Dict[str, List[str]]:
        """Masking types and their sub types."""
        return {masking_type: sorted(sub_types) for masking_type, sub_types in sorted(self._generators.items())}

    def is_supported(self, masking_type: Optional[str], sub_type: Optional[str] = None) -> bool:
        if not masking_type:
            return True
        sub_types = self._generators.get(masking_type.lower())
        if sub_types is None:
            return False
        return sub_type is None or sub_type.lower() in sub_types

    def random_string(self, min_length: int, max_length: int, characters: Optional[str] = None) -> str:
        characters = characters or self.character_string
        if max_length < min_length:
            min_length = max_length
        length = self.random.randint(max(min_length, 0), max(max_length, 0))
        return ''.join(self.random.choice(characters) for _ in range(length))

    def shuffle(self, value: Any) -> Any:
        """Permute the characters (or digits) of an existing value."""
        if value is None:
            return None

        if isinstance(value, bool):
            return value

        if isinstance(value, (int, float, Decimal)):
            text = format(Decimal(str(value)), 'f')
            sign = '-' if text.startswith('-') else ''
            digits = [c for c in text if c.isdigit()]
            self.random.shuffle(digits)
            shuffled_digits = iter(digits)
            shuffled = sign + ''.join(next(shuffled_digits) if c.isdigit() else c for c in text.lstrip('-'))
            if isinstance(value, int):
                return int(shuffled)
            if isinstance(value, float):
                return float(shuffled)
            return Decimal(shuffled)

        characters = list(str(value))
        self.random.shuffle(characters)
        return ''.join(characters)

    def generate(
        self,
        masking_type: Optional[str] = None,
        sub_type: Optional[str] = None,
        column_type: Optional[str] = None,
        min_value: Any = None,
        max_value: Any = None,
        character_string: Optional[str] = None,
        format: Optional[str] = None,
        separator: Optional[str] = None,
        value: Any = None,
        exact_length: bool = False
    ) -> Any:
        """
        Produce one new value.

        Args:
            masking_type: Catalog type (Name, Address, Random ...); None uses the column type
            sub_type: Catalog sub type (FirstName, City ...)
            column_type: SQL type of the target column
            min_value: Lower bound (length for strings, value for numbers and dates)
            max_value: Upper bound (length for strings, value for numbers and dates)
            character_string: Characters for random strings
            format: Faker mask ('#' digit, '?' letter) or strftime format for dates
            separator: Joins multi-part values
            value: Current value, used by Shuffle and exact length
            exact_length: Pad/trim string output to the current value's length

        Returns:
            Generated value
        """
        self.generation_count += 1

        if sub_type and sub_type.lower() == 'shuffle':
            return self.shuffle(value)

        if format and not (masking_type and masking_type.lower() == 'date'):
            result = self.fake.bothify(format, letters=''.join(c for c in (character_string or self.character_string) if c.isalpha()) or string.ascii_letters)
        elif masking_type:
            result = self._generate_from_catalog(masking_type, sub_type, min_value, max_value, character_string, separator)
        else:
            result = self.generate_for_type(column_type, min_value, max_value, character_string)

        if format and isinstance(result, (datetime, date)) and '%' in format:
            result = result.strftime(format)

        if isinstance(result, str) and column_type and base_type(column_type) in STRING_TYPES:
            if exact_length and value is not None:
                result = self._fit_length(result, len(str(value)), character_string)
            elif max_value is not None:
                result = result[:_int_bound(max_value, DEFAULT_MAX_WIDTH)]

        return result

    def _fit_length(self, result: str, length: int, character_string: Optional[str]) -> str:
        if len(result) >= length:
            return result[:length]
        return result + self.random_string(length - len(result), length - len(result), character_string)

    def _generate_from_catalog(
        self,
        masking_type: str,
        sub_type: Optional[str],
        min_value: Any,
        max_value: Any,
        character_string: Optional[str],
        separator: Optional[str]
    ) -> Any:
        sub_types = self._generators.get(masking_type.lower())
        if sub_types is None:
            raise ValueError(f"Unknown masking type: {masking_type}")

        key = (sub_type or '').lower()
        if not key:
            key = sorted(sub_types)[0]
        generator = sub_types.get(key)
        if generator is None:
            raise ValueError(f"Unknown sub type {sub_type} for masking type {masking_type}")

        if masking_type.lower() == 'random' and key in ('string', 'shuffle') and character_string:
            return self.random_string(_int_bound(min_value, 1), _int_bound(max_value, DEFAULT_MAX_WIDTH), character_string)

        return generator(min_value, max_value, separator)

    def generate_for_type(
        self,
        column_type: Optional[str],
        min_value: Any = None,
        max_value: Any = None,
        character_string: Optional[str] = None
    ) -> Any:
        """Random value shaped by the SQL data type alone."""
        type_name = base_type(column_type)

        if type_name in ('bit', 'bool'):
            return self.random.choice([True, False])

        if type_name in INTEGER_TYPES:
            low, high = INTEGER_RANGES[type_name]
            low = max(low, _int_bound(min_value, 0))
            high = min(high, _int_bound(max_value, 10 ** DEFAULT_MAX_WIDTH - 1))
            return self.random.randint(low, max(low, high))

        if type_name in DECIMAL_TYPES:
            precision, scale = self._precision(column_type)
            ceiling = float(10 ** (precision - scale) - 1) if precision else float(10 ** DEFAULT_MAX_WIDTH - 1)
            low = float(min_value) if min_value is not None else 0.0
            high = min(float(max_value), ceiling) if max_value is not None else ceiling
            number = Decimal(str(self.random.uniform(low, max(low, high))))
            if type_name in ('float', 'real'):
                return float(round(number, scale or 4))
            return round(number, scale if precision else 2)

        if type_name in DATE_TYPES:
            low, high = _date_bounds(min_value, max_value)
            result = self.fake.date_time_between(start_date=low, end_date=high)
            if type_name == 'date':
                return result.date()
            if type_name == 'time':
                return result.time().replace(microsecond=0)
            return result

        if type_name in GUID_TYPES:
            return str(uuid.UUID(int=self.random.getrandbits(128), version=4))

        if type_name in BINARY_TYPES:
            length = self.random.randint(_int_bound(min_value, 1), _int_bound(max_value, DEFAULT_MAX_WIDTH))
            return bytes(self.random.getrandbits(8) for _ in range(length))

        if type_name in STRING_TYPES or not type_name or type_name == 'userdefineddatatype':
            return self.random_string(_int_bound(min_value, 1), _int_bound(max_value, DEFAULT_MAX_WIDTH), character_string)

        raise ValueError(f"Unsupported data type for random generation: {column_type}")

    @staticmethod
    def _precision(column_type: Optional[str]) -> Tuple[int, int]:
        match = _PRECISION.search(column_type or '')
        if not match:
            return 0, 2
        precision = int(match.group(1))
        scale = int(match.group(2)) if match.group(2) else 0
        return precision, scale
