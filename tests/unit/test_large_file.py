from __future__ import annotations

import threading
from collections.abc import Callable

import pytest

from b2client.auth import AccountAuthorizationCache
from b2client.content_sources import BytesContentSource
from b2client.errors import B2BadRequestError, B2LocalError, B2ServiceUnavailableError
from b2client.large_file import (
    LargeFileStorer,
    LargeFileUploader,
    match_already_uploaded_parts,
    raise_if_large_file_version_does_not_match_request,
)
from b2client.part_sizes import PartSizes
from b2client.part_storers import (
    AlreadyStoredPartStorer,
    CopyingPartStorer,
    PartStorer,
    UploadingPartStorer,
)
from b2client.retry import DefaultRetryPolicy, Retryer
from b2client.types import (
    B2_AUTO,
    LARGE_FILE_SHA1,
    UNKNOWN_PART_SIZE_PLACEHOLDER,
    UNKNOWN_PART_START_BYTE,
    ByteRange,
    FileVersion,
    Part,
    PartSpec,
    StoreLargeFileRequest,
    UploadFileRequest,
    UploadState,
)

from conftest import (
    BUCKET_ID,
    LARGE_FILE_ID,
    FakeWebifier,
    RecordingExecutor,
    RecordingListener,
    RecordingSleeper,
    sha1_hex,
)

PART_SIZES = PartSizes(minimum_part_size=100, recommended_part_size=1000)


def _content(length: int) -> bytes:
    return bytes(i % 251 for i in range(length))


def _uploading_storers(*chunks: bytes) -> list[PartStorer]:
    return [
        UploadingPartStorer(number, BytesContentSource(chunk))
        for number, chunk in enumerate(chunks, start=1)
    ]


def _part(part_number: int, data: bytes) -> Part:
    return Part(
        file_id=LARGE_FILE_ID,
        part_number=part_number,
        content_length=len(data),
        content_sha1=sha1_hex(data),
    )


def _file_version(**overrides: object) -> FileVersion:
    values: dict[str, object] = {
        "file_id": LARGE_FILE_ID,
        "file_name": "big.bin",
        "content_type": "application/octet-stream",
        "file_info": {},
        "action": "start",
    }
    values.update(overrides)
    return FileVersion(**values)  # type: ignore[arg-type]


def _request(data: bytes, **overrides: object) -> UploadFileRequest:
    values: dict[str, object] = {
        "bucket_id": BUCKET_ID,
        "file_name": "big.bin",
        "content_type": "application/octet-stream",
        "content_source": BytesContentSource(data),
    }
    values.update(overrides)
    return UploadFileRequest(**values)  # type: ignore[arg-type]


@pytest.fixture
def make_storer(
    webifier: FakeWebifier,
    account_auth_cache: AccountAuthorizationCache,
    retryer: Retryer,
    executor: RecordingExecutor,
) -> Callable[..., LargeFileStorer]:
    def factory(part_storers: list[PartStorer], **kwargs: object) -> LargeFileStorer:
        pool = kwargs.pop("executor", executor)
        return LargeFileStorer(
            StoreLargeFileRequest(LARGE_FILE_ID),
            part_storers,
            account_auth_cache,
            webifier,  # type: ignore[arg-type]
            retryer,
            DefaultRetryPolicy,
            pool,  # type: ignore[arg-type]
            **kwargs,  # type: ignore[arg-type]
        )

    return factory


@pytest.fixture
def make_uploader(
    webifier: FakeWebifier,
    account_auth_cache: AccountAuthorizationCache,
    retryer: Retryer,
    executor: RecordingExecutor,
) -> Callable[[UploadFileRequest], LargeFileUploader]:
    def factory(request: UploadFileRequest) -> LargeFileUploader:
        return LargeFileUploader(
            retryer,
            webifier,  # type: ignore[arg-type]
            account_auth_cache,
            DefaultRetryPolicy,
            executor,
            PART_SIZES,
            request,
            request.content_source.get_content_length(),
        )

    return factory


class TestPartStorerValidation:
    def test_storers_are_sorted_by_part_number(self, make_storer):
        storers = _uploading_storers(b"a" * 10, b"b" * 10, b"c" * 10)

        storer = make_storer(list(reversed(storers)))

        assert [s.part_number for s in storer.part_storers] == [1, 2, 3]

    def test_duplicate_part_numbers_are_rejected(self, make_storer):
        storers = [
            UploadingPartStorer(1, BytesContentSource(b"a")),
            UploadingPartStorer(1, BytesContentSource(b"b")),
        ]

        with pytest.raises(ValueError, match="multiple part storers"):
            make_storer(storers)

    def test_gaps_are_rejected_unless_allowed(self, make_storer):
        storers = [
            UploadingPartStorer(1, BytesContentSource(b"a")),
            UploadingPartStorer(3, BytesContentSource(b"c")),
        ]

        with pytest.raises(ValueError, match="part number 2 has no part storers"):
            make_storer(storers)
        assert len(make_storer(storers, allow_gaps=True).part_storers) == 2

    def test_part_numbers_start_at_one(self, make_storer):
        with pytest.raises(ValueError, match="invalid part number"):
            make_storer([UploadingPartStorer(0, BytesContentSource(b"a"))])


class TestStartBytes:
    def test_start_bytes_accumulate_part_sizes(self, make_storer):
        storer = make_storer(_uploading_storers(b"a" * 100, b"b" * 200, b"c" * 50))

        assert [storer.get_start_byte_or_unknown(n) for n in (1, 2, 3)] == [0, 100, 300]

    def test_start_bytes_after_a_copy_are_unknown(self, make_storer):
        storer = make_storer(
            [
                UploadingPartStorer(1, BytesContentSource(b"a" * 100)),
                CopyingPartStorer(2, "4_source"),
                UploadingPartStorer(3, BytesContentSource(b"c" * 100)),
            ]
        )

        assert storer.get_start_byte_or_unknown(1) == 0
        assert storer.get_start_byte_or_unknown(2) == 100
        assert storer.get_start_byte_or_unknown(3) == UNKNOWN_PART_START_BYTE

    def test_unknown_part_number(self, make_storer):
        storer = make_storer(_uploading_storers(b"a"))

        with pytest.raises(ValueError, match="invalid part number"):
            storer.get_start_byte_or_unknown(7)


class TestStoreFile:
    def test_uploads_every_part_and_finishes_in_part_order(
        self, make_storer, webifier: FakeWebifier, listener: RecordingListener
    ):
        chunks = [_content(300), b"second" * 40, b"third" * 20]

        result = make_storer(_uploading_storers(*chunks)).store_file(listener)

        assert result.file_id == LARGE_FILE_ID
        assert webifier.finished == [[sha1_hex(chunk) for chunk in chunks]]
        assert webifier.count("finish_large_file") == 1
        for number, chunk in enumerate(chunks, start=1):
            assert webifier.count(f"upload_part:{number}") == 1
            assert webifier.uploaded_parts[number] == chunk

    def test_progress_for_each_part(
        self, make_storer, webifier: FakeWebifier, listener: RecordingListener
    ):
        chunks = [_content(300), _content(200)]

        make_storer(_uploading_storers(*chunks)).store_file(listener)

        for index, chunk in enumerate(chunks):
            events = listener.for_part(index)
            assert events[0].state is UploadState.WAITING_TO_START
            assert events[0].length == len(chunk)
            assert events[1].state is UploadState.STARTING
            assert events[-1].state is UploadState.SUCCEEDED
            assert events[-1].bytes_so_far == len(chunk)
            assert {event.part_count for event in events} == {2}
        assert listener.for_part(1)[0].start_byte == 300

    def test_copied_parts(self, make_storer, webifier: FakeWebifier, listener: RecordingListener):
        storers: list[PartStorer] = [
            CopyingPartStorer(1, "4_source", ByteRange(0, 199)),
            CopyingPartStorer(2, "4_source", ByteRange(200, 299)),
        ]

        make_storer(storers).store_file(listener)

        assert webifier.finished == [["copied-sha1-1", "copied-sha1-2"]]
        waiting = listener.for_part(0)[0]
        assert waiting.state is UploadState.WAITING_TO_START
        assert waiting.length == UNKNOWN_PART_SIZE_PLACEHOLDER
        succeeded = listener.for_part(1)[-1]
        assert succeeded.state is UploadState.SUCCEEDED
        assert succeeded.length == 100
        assert succeeded.start_byte == UNKNOWN_PART_START_BYTE

    def test_already_stored_parts_are_not_uploaded(
        self, make_storer, webifier: FakeWebifier, listener: RecordingListener
    ):
        first = _content(300)
        second = b"x" * 100
        storers: list[PartStorer] = [
            AlreadyStoredPartStorer(_part(1, first)),
            UploadingPartStorer(2, BytesContentSource(second)),
        ]

        make_storer(storers).store_file(listener)

        assert webifier.count("upload_part:1") == 0
        assert webifier.finished == [[sha1_hex(first), sha1_hex(second)]]
        assert listener.states_for_part(0) == [
            UploadState.WAITING_TO_START,
            UploadState.SUCCEEDED,
        ]

    def test_transient_part_failure_is_retried(
        self,
        make_storer,
        webifier: FakeWebifier,
        sleeper: RecordingSleeper,
        listener: RecordingListener,
    ):
        chunks = [_content(300), _content(200), _content(100)]
        webifier.fail(
            "upload_part:2", B2ServiceUnavailableError("service_unavailable", None, "busy")
        )

        make_storer(_uploading_storers(*chunks)).store_file(listener)

        assert sleeper.calls == [1]
        assert webifier.count("upload_part:2") == 2
        assert webifier.count("finish_large_file") == 1

        events = listener.for_part(1)
        starting = [i for i, event in enumerate(events) if event.state is UploadState.STARTING]
        assert len(starting) == 2
        first_attempt = events[starting[0] + 1 : starting[1]]
        assert any(event.bytes_so_far > 0 for event in first_attempt)
        assert events[starting[1]].bytes_so_far == 0
        assert events[-1].state is UploadState.SUCCEEDED
        assert UploadState.FAILED not in [event.state for event in events]

    def test_retry_uses_a_fresh_upload_part_url(self, make_storer, webifier: FakeWebifier):
        webifier.fail(
            "upload_part:1", B2ServiceUnavailableError("service_unavailable", None, "busy")
        )

        make_storer(_uploading_storers(_content(300))).store_file()

        assert webifier.count("get_upload_part_url") == 2

    def test_permanent_part_failure_cancels_the_rest(
        self, make_storer, webifier: FakeWebifier, listener: RecordingListener
    ):
        gate = threading.Event()

        def hold_later_parts(part_number: int) -> None:
            if part_number > 1:
                gate.wait(timeout=10)

        webifier.upload_part_hook = hold_later_parts
        error = B2BadRequestError("bad_request", None, "no")
        webifier.fail("upload_part:1", error)
        pool = RecordingExecutor(max_workers=1)
        try:
            storer = make_storer(_uploading_storers(*[_content(200)] * 4), executor=pool)
            with pytest.raises(B2BadRequestError) as exc_info:
                storer.store_file(listener)
            cancelled = [future.cancelled() for future in pool.futures[1:]]
        finally:
            gate.set()
            pool.shutdown(wait=True)

        assert exc_info.value is error
        assert sum(cancelled) >= 2
        assert webifier.count("finish_large_file") == 0
        assert listener.states_for_part(0)[-1] is UploadState.FAILED

    def test_cancel_before_start(self, make_storer, webifier: FakeWebifier):
        storer = make_storer(_uploading_storers(_content(200)))
        storer.cancel()

        with pytest.raises(B2LocalError) as exc_info:
            storer.store_file()

        assert exc_info.value.code == "cancelled"
        assert webifier.calls == []

    def test_cancel_while_uploading(self, make_storer, webifier: FakeWebifier):
        storers = _uploading_storers(_content(200), _content(200))
        storer = make_storer(storers)
        webifier.upload_part_hook = lambda part_number: storer.cancel()

        with pytest.raises(B2LocalError) as exc_info:
            storer.store_file()

        assert exc_info.value.code == "cancelled"
        assert storer.cancellation_token.is_cancelled()
        assert webifier.count("finish_large_file") == 0

    def test_shut_down_executor_is_trouble(self, make_storer, webifier: FakeWebifier):
        pool = RecordingExecutor(max_workers=1)
        pool.shutdown()
        storer = make_storer(_uploading_storers(_content(200)), executor=pool)

        with pytest.raises(B2LocalError) as exc_info:
            storer.store_file()

        assert exc_info.value.code == "trouble"
        assert webifier.count("finish_large_file") == 0


class TestStoreFileAsync:
    def test_completes_on_a_single_worker(self, make_storer, webifier: FakeWebifier):
        pool = RecordingExecutor(max_workers=1)
        try:
            chunks = [_content(300), _content(200)]
            future = make_storer(_uploading_storers(*chunks), executor=pool).store_file_async()
            result = future.result(timeout=10)
        finally:
            pool.shutdown(wait=True)

        assert result.file_id == LARGE_FILE_ID
        assert webifier.finished == [[sha1_hex(chunk) for chunk in chunks]]

    def test_failure_is_set_on_the_future(self, make_storer, webifier: FakeWebifier):
        error = B2BadRequestError("bad_request", None, "no")
        webifier.fail("upload_part:2", error)

        future = make_storer(_uploading_storers(_content(300), _content(200))).store_file_async()

        assert future.exception(timeout=10) is error
        assert webifier.count("finish_large_file") == 0

    def test_cancelling_the_future_cancels_the_upload(self, make_storer, webifier: FakeWebifier):
        gate = threading.Event()
        started = threading.Event()

        def hold(part_number: int) -> None:
            started.set()
            gate.wait(timeout=10)

        webifier.upload_part_hook = hold
        pool = RecordingExecutor(max_workers=1)
        try:
            storer = make_storer(_uploading_storers(_content(300), _content(200)), executor=pool)
            future = storer.store_file_async()
            assert started.wait(timeout=10)

            assert future.cancel()
            assert storer.cancellation_token.is_cancelled()
        finally:
            gate.set()
            pool.shutdown(wait=True)

        assert future.cancelled()
        assert webifier.count("finish_large_file") == 0


class TestMatchAlreadyUploadedParts:
    SPECS = [PartSpec(1, 0, 1000), PartSpec(2, 1000, 1000), PartSpec(3, 2000, 1000)]

    def _uploaded(self, *numbers_and_lengths: tuple[int, int]) -> list[Part]:
        return [
            Part(file_id=LARGE_FILE_ID, part_number=n, content_length=length, content_sha1="s")
            for n, length in numbers_and_lengths
        ]

    def test_matching_parts(self):
        uploaded = self._uploaded((2, 1000), (1, 1000))

        assert sorted(match_already_uploaded_parts(self.SPECS, uploaded)) == [1, 2]

    def test_length_mismatch_is_not_reused(self):
        uploaded = self._uploaded((1, 1000), (2, 999), (3, 1000))

        assert sorted(match_already_uploaded_parts(self.SPECS, uploaded)) == [1, 3]

    def test_parts_outside_the_plan_are_ignored(self):
        uploaded = self._uploaded((3, 1000), (4, 1000), (5, 1000))

        assert sorted(match_already_uploaded_parts(self.SPECS, uploaded)) == [3]

    def test_nothing_uploaded(self):
        assert match_already_uploaded_parts(self.SPECS, []) == {}


class TestRaiseIfLargeFileVersionDoesNotMatchRequest:
    def test_matching_request_passes(self):
        data = _content(500)
        request = _request(
            data,
            content_source=BytesContentSource(data, sha1=sha1_hex(data)),
            file_info={"color": "blue"},
        )
        file_version = _file_version(
            file_info={"color": "blue", LARGE_FILE_SHA1: sha1_hex(data)}
        )

        raise_if_large_file_version_does_not_match_request(file_version, request)

    @pytest.mark.parametrize(
        "file_version_overrides, request_overrides",
        [
            ({"file_name": "other.bin"}, {}),
            ({"content_type": "text/plain"}, {}),
            ({"file_info": {"color": "red"}}, {"file_info": {"color": "blue"}}),
            ({"file_info": {LARGE_FILE_SHA1: "0" * 40}}, {}),
        ],
    )
    def test_mismatch_raises(self, file_version_overrides, request_overrides):
        request = _request(_content(500), **request_overrides)
        file_version = _file_version(**file_version_overrides)

        with pytest.raises(B2LocalError) as exc_info:
            raise_if_large_file_version_does_not_match_request(file_version, request)

        assert exc_info.value.code == "mismatch"

    def test_auto_content_type_is_not_compared(self):
        request = _request(_content(500), content_type=B2_AUTO)

        raise_if_large_file_version_does_not_match_request(
            _file_version(content_type="video/mp4"), request
        )


class TestLargeFileUploader:
    def test_upload_large_file(self, make_uploader, webifier: FakeWebifier):
        data = _content(2001)

        result = make_uploader(_request(data)).upload_large_file()

        assert result.file_id == LARGE_FILE_ID
        assert webifier.count("start_large_file") == 1
        assert webifier.count("upload_part:1") == 1
        assert webifier.count("upload_part:2") == 1
        assert webifier.count("finish_large_file") == 1
        assert webifier.uploaded_parts[1] + webifier.uploaded_parts[2] == data

    def test_known_sha1_is_recorded_at_start(self, make_uploader, webifier: FakeWebifier):
        data = _content(2500)
        request = _request(
            data,
            content_source=BytesContentSource(data, sha1=sha1_hex(data)),
            file_info={"color": "blue"},
        )

        make_uploader(request).upload_large_file()

        assert webifier.started_file_info == {"color": "blue", LARGE_FILE_SHA1: sha1_hex(data)}
        assert request.file_info == {"color": "blue"}

    def test_resume_uploads_only_missing_parts(self, make_uploader, webifier: FakeWebifier):
        data = _content(4000)
        listener = RecordingListener()
        request = _request(data, listener=listener)
        already_uploaded = [_part(1, data[:1000]), _part(2, data[1000:2000])]

        make_uploader(request).finish_uploading_large_file(_file_version(), already_uploaded)

        assert webifier.count("upload_part:1") == 0
        assert webifier.count("upload_part:2") == 0
        assert webifier.count("upload_part:3") == 1
        assert webifier.count("upload_part:4") == 1
        assert webifier.finished == [
            [sha1_hex(data[start : start + 1000]) for start in (0, 1000, 2000, 3000)]
        ]
        for index in (0, 1):
            assert listener.states_for_part(index) == [
                UploadState.WAITING_TO_START,
                UploadState.SUCCEEDED,
            ]
        assert listener.for_part(3)[-1].state is UploadState.SUCCEEDED

    def test_resume_refuses_mismatched_file(self, make_uploader, webifier: FakeWebifier):
        request = _request(_content(4000))

        with pytest.raises(B2LocalError) as exc_info:
            make_uploader(request).finish_uploading_large_file(
                _file_version(file_name="other.bin"), []
            )

        assert exc_info.value.code == "mismatch"
        assert webifier.calls == []
