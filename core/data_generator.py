"""
Faker based test data for sign-up forms and the account API.

Emails are generated on reserved test domains so created accounts never
collide with real mailboxes.
"""

import time
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from faker import Faker


_faker = Faker()

EMAIL_PROVIDER = "example.test"
API_TITLES = ("Mr", "Mrs", "Miss")
FORM_TITLES = ("Mr.", "Mrs.")


@dataclass(frozen=True)
class Identity:
    first_name: str
    last_name: str


@dataclass(frozen=True)
class DateOfBirth:
    day: str
    month: str
    year: str


@dataclass(frozen=True)
class GeneratedUserData:
    name: str
    email: str
    password: str


@dataclass(frozen=True)
class GeneratedDetailsData:
    gender: str
    first_name: str
    last_name: str
    address: str
    country: str
    state: str
    city: str
    zipcode: str
    mobile_number: str
    date_of_birth: DateOfBirth


def seed(value: Optional[int]):
    """Seed the shared generator; ``None`` restores random output."""
    _faker.seed_instance(value)


def generate_identity() -> Identity:
    return Identity(_faker.first_name(), _faker.last_name())


def _email_for(identity: Identity) -> str:
    # Suffix keeps repeated name pairs from producing the same address
    local = f"{identity.first_name}.{identity.last_name}.{_faker.numerify('####')}"
    local = "".join(ch for ch in local if ch.isalnum() or ch in "._").lower()
    return f"{local}@{EMAIL_PROVIDER}"


def generate_password(length: int = 12) -> str:
    # The demo sites reject passwords without a digit or an upper case letter
    return _faker.password(length=length, special_chars=True, digits=True,
                           upper_case=True, lower_case=True)


def generate_user_data(identity: Optional[Identity] = None) -> GeneratedUserData:
    identity = identity or generate_identity()
    return GeneratedUserData(
        name=f"{identity.first_name} {identity.last_name}",
        email=_email_for(identity),
        password=generate_password(),
    )


def generate_details_data(identity: Optional[Identity] = None) -> GeneratedDetailsData:
    identity = identity or generate_identity()
    return GeneratedDetailsData(
        gender=_faker.random_element(FORM_TITLES),
        first_name=identity.first_name,
        last_name=identity.last_name,
        address=_faker.street_address(),
        country="United States",
        state=_faker.state(),
        city=_faker.city(),
        zipcode=_faker.zipcode(),
        mobile_number=_faker.phone_number(),
        date_of_birth=DateOfBirth(
            day=str(_faker.random_int(min=1, max=28)),
            month=str(_faker.random_int(min=1, max=12)),
            year=str(_faker.random_int(min=1950, max=2000)),
        ),
    )


def generate_unique_email() -> str:
    timestamp = int(time.time() * 1000)
    return f"testuser_{timestamp}_{_faker.pystr(min_chars=8, max_chars=8).lower()}@test.com"


def generate_mobile_number() -> str:
    return _faker.numerify("##########")


def generate_user_account_data(**overrides: Any) -> Dict[str, str]:
    """Form payload accepted by ``POST /api/createAccount``."""
    first_name = _faker.first_name()
    last_name = _faker.last_name()
    birth_date = _faker.date_of_birth(minimum_age=18, maximum_age=65)

    data = {
        "name": f"{first_name} {last_name}",
        "email": generate_unique_email(),
        "password": generate_password(),
        "title": _faker.random_element(API_TITLES),
        "birth_date": str(_faker.random_int(min=1, max=28)),
        "birth_month": str(_faker.random_int(min=1, max=12)),
        "birth_year": str(birth_date.year),
        "firstname": first_name,
        "lastname": last_name,
        "company": _faker.company(),
        "address1": _faker.street_address(),
        "address2": _faker.secondary_address(),
        "country": _faker.country(),
        "zipcode": _faker.zipcode(),
        "state": _faker.state(),
        "city": _faker.city(),
        "mobile_number": generate_mobile_number(),
    }
    data.update(overrides)
    return data


def generate_multiple_user_accounts(count: int) -> List[Dict[str, str]]:
    return [generate_user_account_data() for _ in range(count)]


def generate_search_product_data(search_term: str) -> Dict[str, str]:
    return {"search_product": search_term}


def as_dict(data) -> Dict[str, Any]:
    """Plain dict view of any generated dataclass."""
    return asdict(data)
