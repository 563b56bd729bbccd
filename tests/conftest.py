import io

import pytest
from urllib3 import HTTPResponse


@pytest.fixture
def make_response():
    def factory(body: bytes = b"", status: int = 200, headers=None, url: str = "http://example.com/") -> HTTPResponse:
        return HTTPResponse(
            body=io.BytesIO(body),
            headers=headers or {},
            status=status,
            preload_content=False,
            request_url=url,
        )

    return factory
