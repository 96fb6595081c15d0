"""Asynchronous HTTP client shared by the GitHub and Azure DevOps APIs."""

import base64
import json
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import aiohttp
from loguru import logger
from pydantic import BaseModel

from .. import __version__
from ..config.config import AdoConfig, GhesConfig, TargetConfig
from .exceptions import (
    ApiError,
    AuthenticationError,
    ForbiddenError,
    GraphQLError,
    NotFoundError,
    RateLimitError,
)

USER_AGENT = f'bulk-migrate/{__version__}'
GITHUB_API_URL = 'https://api.github.com'


class APIResponse(BaseModel):
    """Standard API response wrapper."""

    status_code: int
    data: Any
    headers: Dict[str, str]
    success: bool


def raise_for_status(
    status: int,
    headers: Dict[str, str],
    error_data: Optional[Any] = None,
    text: str = '',
) -> None:
    """Map an HTTP error status to the API exception hierarchy.

    Args:
        status: HTTP status code
        headers: Response headers
        error_data: Parsed JSON error body, if any
        text: Raw response body

    Raises:
        ApiError: For any status >= 400
    """
    if status < 400:
        return

    if status == 429:
        retry_after = int(headers.get('Retry-After', 60))
        raise RateLimitError(
            f'Rate limit exceeded. Retry after {retry_after} seconds',
            retry_after=retry_after,
            status_code=status,
        )

    if status == 401:
        raise AuthenticationError('Authentication failed', status_code=status)

    if status == 403:
        raise ForbiddenError(
            'Permission denied', status_code=status, response_data=error_data
        )

    if status == 404:
        raise NotFoundError('Resource not found', status_code=status)

    if isinstance(error_data, dict) and error_data.get('message'):
        message = error_data['message']
    else:
        message = f'HTTP {status}: {text}' if text else f'HTTP {status}'

    raise ApiError(
        f'API request failed: {message}',
        status_code=status,
        response_data=error_data if isinstance(error_data, dict) else None,
    )


class ApiClient:
    """Thin aiohttp client with authentication and error mapping."""

    def __init__(
        self,
        base_url: str,
        auth_headers: Dict[str, str],
        timeout: int = 30,
        verify_ssl: bool = True,
    ):
        """Initialize API client.

        Args:
            base_url: API root URL
            auth_headers: Authentication headers sent with every request
            timeout: Request timeout in seconds
            verify_ssl: Verify TLS certificates
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'User-Agent': USER_AGENT,
        }
        self.headers.update(auth_headers)

    def _build_url(self, endpoint: str) -> str:
        """Build full API URL from endpoint.

        Absolute URLs are passed through unchanged.
        """
        if endpoint.startswith(('http://', 'https://')):
            return endpoint
        return urljoin(self.base_url + '/', endpoint.lstrip('/'))

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        allow_redirects: bool = True,
    ) -> APIResponse:
        """Make an API request.

        Args:
            method: HTTP method
            endpoint: API endpoint or absolute URL
            params: Query parameters
            data: JSON request body
            allow_redirects: Follow 3xx responses

        Returns:
            API response
        """
        url = self._build_url(endpoint)
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        connector = aiohttp.TCPConnector(ssl=None if self.verify_ssl else False)

        logger.debug(f'{method} {url}')

        async with aiohttp.ClientSession(
            headers=self.headers, timeout=timeout, connector=connector
        ) as session:
            try:
                async with session.request(
                    method=method,
                    url=url,
                    params=params,
                    json=data,
                    allow_redirects=allow_redirects,
                ) as response:
                    response_headers = dict(response.headers)
                    response_text = await response.text()

                    try:
                        response_data = json.loads(response_text) if response_text else None
                    except ValueError:
                        response_data = response_text

                    raise_for_status(
                        response.status, response_headers, response_data, response_text
                    )

                    return APIResponse(
                        status_code=response.status,
                        data=response_data,
                        headers=response_headers,
                        success=200 <= response.status < 300,
                    )

            except aiohttp.ClientError as e:
                logger.error(f'Network error during API request: {e}')
                raise ApiError(f'Network error: {e}')

    async def get(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None, **kwargs
    ) -> APIResponse:
        """Make GET request."""
        return await self.request('GET', endpoint, params=params, **kwargs)

    async def post(
        self, endpoint: str, data: Optional[Dict[str, Any]] = None, **kwargs
    ) -> APIResponse:
        """Make POST request."""
        return await self.request('POST', endpoint, data=data, **kwargs)

    async def delete(self, endpoint: str, **kwargs) -> APIResponse:
        """Make DELETE request."""
        return await self.request('DELETE', endpoint, **kwargs)

    async def graphql(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        operation_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run a GraphQL query against ``{base_url}/graphql``.

        Returns:
            The ``data`` member of the response

        Raises:
            GraphQLError: If the response carries errors
        """
        payload: Dict[str, Any] = {'query': query, 'variables': variables or {}}
        if operation_name:
            payload['operationName'] = operation_name

        response = await self.post('/graphql', data=payload)
        body = response.data or {}

        errors = body.get('errors') if isinstance(body, dict) else None
        if errors:
            message = '; '.join(e.get('message', str(e)) for e in errors)
            raise GraphQLError(message, status_code=response.status_code, response_data=body)

        return body.get('data') or {}


class ClientFactory:
    """Factory for creating authenticated API clients."""

    @staticmethod
    def create_github_client(
        api_url: str, token: Optional[str], timeout: int = 30, verify_ssl: bool = True
    ) -> ApiClient:
        """Create a GitHub client authenticating with a bearer token.

        Raises:
            AuthenticationError: If no token is available
        """
        if not token:
            raise AuthenticationError(f'No GitHub token provided for {api_url}')

        return ApiClient(
            api_url,
            {'Authorization': f'Bearer {token}'},
            timeout=timeout,
            verify_ssl=verify_ssl,
        )

    @staticmethod
    def create_target_client(config: TargetConfig, api_url: Optional[str] = None) -> ApiClient:
        """Create the target GitHub client, optionally against another API URL."""
        return ClientFactory.create_github_client(
            api_url or config.api_url, config.token, timeout=config.timeout
        )

    @staticmethod
    def create_source_client(config: GhesConfig, api_url: Optional[str] = None) -> ApiClient:
        """Create the source GitHub / GHES client.

        ``api_url`` wins over the configured GHES URL; with neither the client
        talks to GitHub.com.
        """
        return ClientFactory.create_github_client(
            api_url or config.api_url or GITHUB_API_URL,
            config.token,
            verify_ssl=config.verify_ssl,
        )

    @staticmethod
    def create_ado_client(config: AdoConfig) -> ApiClient:
        """Create an Azure DevOps client authenticating with a PAT.

        Raises:
            AuthenticationError: If no PAT is available
        """
        if not config.pat:
            raise AuthenticationError('No Azure DevOps personal access token provided')

        credentials = base64.b64encode(f':{config.pat}'.encode()).decode()
        return ApiClient(
            config.server_url,
            {'Authorization': f'Basic {credentials}'},
            timeout=config.timeout,
        )
