# Strings and fixed values shared by the UI and API suites

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict


@dataclass(frozen=True)
class SiteConfig:
    base_url: str
    locale: str
    currency: str
    country: str
    language: str


SITE_CONFIGS: Dict[str, SiteConfig] = {
    "Lebanon": SiteConfig(
        base_url="https://www.ubuy.com.lb",
        locale="en-LB",
        currency="USD",
        country="lebanon",
        language="English",
    ),
    "Japan": SiteConfig(
        base_url="https://www.ubuy.co.jp",
        locale="ja-JP",
        currency="JPY",
        country="japan",
        language="Japanese",
    ),
}


# Automation Exercise UI text
PAGE_TITLE_HOME = "Automation Exercise"

ERROR_SIGNUP_EMAIL_EXISTS = "Email Address already exist!"
ERROR_LOGIN_INVALID_CREDENTIALS = "Your email or password is incorrect!"

TEXT_NEW_USER_SIGNUP = "New User Signup!"
TEXT_ENTER_ACCOUNT_INFO = "Enter Account Information"
TEXT_ACCOUNT_CREATED = "Account Created!"
TEXT_ACCOUNT_DELETED = "Account Deleted!"
TEXT_LOGGED_IN_AS = "Logged in as"

DEFAULT_COMPANY = "Test Company"
DEFAULT_ADDRESS_2 = "Apt 123"
INVALID_PASSWORD = "WrongPassword123!"


# Automation Exercise REST API

class ResponseCode(IntEnum):
    OK = 200
    CREATED = 201
    BAD_REQUEST = 400
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405


class ResponseMessage:
    USER_EXISTS = "User exists!"
    USER_NOT_FOUND = "User not found!"
    USER_CREATED = "User created!"
    ACCOUNT_DELETED = "Account deleted!"
    USER_UPDATED = "User updated!"
    METHOD_NOT_SUPPORTED = "This request method is not supported."
    BAD_REQUEST_SEARCH = "Bad request, search_product parameter is missing in POST request."
    BAD_REQUEST_LOGIN = "Bad request, email or password parameter is missing in POST request."


SEARCH_TERMS = ["top", "tshirt", "jean", "dress", "saree", "jeans", "shirt"]

# Responses slower than this fail the performance checks
MAX_RESPONSE_SECONDS = 5.0
