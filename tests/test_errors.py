import errno
import io
import json
import os

import pytest

from netavark.errors import (
    NetavarkError,
    NetavarkErrorList,
    NetlinkError,
    SysctlError,
)


def test_plain_message():
    err = NetavarkError("boom")
    assert str(err) == "boom"
    assert err.cause is None


def test_wrap_prefixes_message_and_keeps_cause():
    inner = NetavarkError("boom")
    wrapped = NetavarkError.wrap("open", inner)
    assert str(wrapped) == "open: boom"
    assert wrapped.cause is inner
    assert wrapped.__cause__ is inner


def test_wrap_chain_root_cause():
    inner = NetlinkError(errno.ENODEV)
    wrapped = NetavarkError.wrap("outer", NetavarkError.wrap("inner", inner))
    assert wrapped.root_cause is inner
    assert isinstance(wrapped.root_cause, NetlinkError)
    assert wrapped.root_cause.code == errno.ENODEV


def test_print_json():
    stream = io.StringIO()
    NetavarkError.wrap("open", NetavarkError("boom")).print_json(stream)
    assert json.loads(stream.getvalue()) == {"error": "open: boom"}


def test_netlink_error_message():
    err = NetlinkError(errno.EEXIST)
    assert err.code == errno.EEXIST
    assert os.strerror(errno.EEXIST) in str(err)
    assert str(errno.EEXIST) in str(err)


def test_sysctl_error_flags():
    err = SysctlError("missing", not_found=True)
    assert err.not_found is True
    assert err.errno is None
    ro = SysctlError("read only", errno=errno.EROFS)
    assert ro.errno == errno.EROFS
    assert ro.not_found is False


def test_error_list_empty_does_not_raise():
    errors = NetavarkErrorList()
    errors.raise_if_any()
    assert list(errors) == []


def test_error_list_raises_with_all_errors():
    first = NetavarkError("first")
    second = NetavarkError("second")
    errors = NetavarkErrorList()
    errors.append(first)
    errors.append(second)
    with pytest.raises(NetavarkErrorList) as info:
        errors.raise_if_any()
    assert info.value.errors == [first, second]
    text = str(info.value)
    assert "first" in text and "second" in text


def test_error_list_single_error_message():
    errors = NetavarkErrorList([NetavarkError("only")])
    assert str(errors) == "only"