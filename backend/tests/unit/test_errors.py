"""Unit tests for the error handling decorator."""

import pytest

from mergebox.core.errors import MergeboxError, QbittorrentError, handle_errors


class Boom(Exception):
    pass


@pytest.mark.asyncio
class TestHandleErrors:
    async def test_reraises_unwrapped(self):
        @handle_errors(error_types=(Boom,), default_message="request failed", log_level="warning")
        async def fails():
            raise Boom("x")

        with pytest.raises(Boom):
            await fails()

    async def test_wraps(self):
        @handle_errors(error_types=(Boom,), default_message="request failed", wrap_as=QbittorrentError)
        async def fails():
            raise Boom("x")

        with pytest.raises(QbittorrentError, match="request failed: x") as exc_info:
            await fails()
        assert isinstance(exc_info.value.__cause__, Boom)
        assert isinstance(exc_info.value, MergeboxError)

    async def test_other_errors_pass_through(self):
        @handle_errors(error_types=(Boom,), default_message="nope", wrap_as=QbittorrentError)
        async def fails():
            raise KeyError("k")

        with pytest.raises(KeyError):
            await fails()

    async def test_return_value_kept(self):
        @handle_errors(error_types=(Boom,), default_message="nope")
        async def works():
            return 42

        assert await works() == 42
