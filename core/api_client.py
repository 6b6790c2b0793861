"""
Client for the Automation Exercise practice REST API.

The API takes form-encoded bodies and answers with a JSON document whose
``responseCode`` field carries the logical status; the HTTP status is 200 for
most error cases, and the content type is ``text/html``.
"""

import logging
from typing import Any, Dict, Optional

import requests

from exceptions import ApiClientError, create_error_context


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://automationexercise.com/api"


class ApiClient:

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def request(self, method: str, endpoint: str, data: Optional[Dict[str, Any]] = None,
                params: Optional[Dict[str, str]] = None) -> requests.Response:
        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.request(method, url, data=data, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise ApiClientError(
                message=str(e),
                method=method,
                url=url,
                error_context=create_error_context(component="API Client", operation=f"{method} {endpoint}"),
                cause=e
            ) from e
        logger.debug(f"{method} {url} -> {response.status_code}")
        return response

    def get(self, endpoint: str, params: Optional[Dict[str, str]] = None) -> requests.Response:
        return self.request("GET", endpoint, params=params)

    def post(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> requests.Response:
        return self.request("POST", endpoint, data=data)

    def put(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> requests.Response:
        return self.request("PUT", endpoint, data=data)

    def delete(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> requests.Response:
        return self.request("DELETE", endpoint, data=data)

    @staticmethod
    def parse_json(response: requests.Response) -> Dict[str, Any]:
        try:
            return response.json()
        except ValueError as e:
            raise ApiClientError(
                message=f"Response is not JSON: {response.text[:200]!r}",
                method=response.request.method if response.request else None,
                url=response.url,
                cause=e
            ) from e

    # --- endpoints ---

    def get_products_list(self) -> Dict[str, Any]:
        return self.parse_json(self.get("/productsList"))

    def get_brands_list(self) -> Dict[str, Any]:
        return self.parse_json(self.get("/brandsList"))

    def search_product(self, search_term: Optional[str]) -> Dict[str, Any]:
        data = {} if search_term is None else {"search_product": search_term}
        return self.parse_json(self.post("/searchProduct", data))

    def verify_login(self, email: Optional[str], password: Optional[str]) -> Dict[str, Any]:
        data = {key: value for key, value in (("email", email), ("password", password)) if value is not None}
        return self.parse_json(self.post("/verifyLogin", data))

    def create_account(self, account: Dict[str, str]) -> Dict[str, Any]:
        return self.parse_json(self.post("/createAccount", account))

    def update_account(self, account: Dict[str, str]) -> Dict[str, Any]:
        return self.parse_json(self.put("/updateAccount", account))

    def delete_account(self, email: str, password: str) -> Dict[str, Any]:
        return self.parse_json(self.delete("/deleteAccount", {"email": email, "password": password}))

    def get_user_detail_by_email(self, email: str) -> Dict[str, Any]:
        return self.parse_json(self.get("/getUserDetailByEmail", params={"email": email}))
