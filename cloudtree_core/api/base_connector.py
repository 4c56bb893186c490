"""
Base API Connector Class for the Soil Backend
Provides the shared HTTP plumbing for REST connectors
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Callable, TypeVar
from dataclasses import dataclass
import logging

import requests

from cloudtree_core.errors import RemoteGatewayError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class APIConfig:
    """Configuration for API connection"""
    api_name: str
    base_url: str
    headers: Optional[Dict[str, str]] = None
    timeout: float = 10.0  # seconds, every gateway call


class BaseAPIConnector(ABC):
    """Abstract base class for REST connectors"""

    def __init__(self, config: APIConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

        # Set default headers
        if config.headers:
            self.session.headers.update(config.headers)

    @abstractmethod
    def validate_response(self, response: requests.Response) -> bool:
        """Validate API response"""
        pass

    def _make_request(
        self,
        endpoint: str,
        method: str = "GET",
        params: Optional[Dict] = None,
        data: Optional[Dict] = None
    ) -> requests.Response:
        """
        Make HTTP request with error handling

        Args:
            endpoint: API endpoint (appended to base_url)
            method: HTTP method (GET, POST, DELETE)
            params: Query parameters
            data: JSON request body

        Returns:
            Response object

        Raises:
            RemoteGatewayError: on network error, timeout or non-2xx status
        """
        url = f"{self.config.base_url.rstrip('/')}/{endpoint.lstrip('/')}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=data,
                timeout=self.config.timeout
            )
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise RemoteGatewayError(
                f"API request failed for {self.config.api_name}: {e}",
                endpoint=endpoint,
                status_code=status,
            ) from e
        except requests.exceptions.RequestException as e:
            raise RemoteGatewayError(
                f"API request failed for {self.config.api_name}: {e}",
                endpoint=endpoint,
            ) from e

        if not self.validate_response(response):
            raise RemoteGatewayError(
                f"Unexpected response from {self.config.api_name}: {response.status_code}",
                endpoint=endpoint,
                status_code=response.status_code,
            )

        return response

    def _json(self, response: requests.Response, endpoint: str) -> Any:
        """Decode a JSON body, converting decode failures to gateway errors"""
        try:
            return response.json()
        except ValueError as e:
            raise RemoteGatewayError(
                f"Invalid JSON from {self.config.api_name}: {e}",
                endpoint=endpoint,
                status_code=response.status_code,
            ) from e

    def _json_list(self, response: requests.Response, endpoint: str) -> List[Dict[str, Any]]:
        body = self._json(response, endpoint)
        if not isinstance(body, list):
            raise RemoteGatewayError(
                f"Expected a JSON list from {endpoint}, got {type(body).__name__}",
                endpoint=endpoint,
            )
        return body

    def _decode_records(
        self,
        response: requests.Response,
        endpoint: str,
        decode: Callable[[Dict[str, Any]], T],
    ) -> List[T]:
        """Decode a JSON list of records; a malformed record is a gateway error"""
        records = self._json_list(response, endpoint)
        try:
            return [decode(record) for record in records]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise RemoteGatewayError(
                f"Malformed record from {self.config.api_name}: {e!r}",
                endpoint=endpoint,
                status_code=response.status_code,
            ) from e

    def close(self) -> None:
        """Release the underlying HTTP session"""
        self.session.close()
