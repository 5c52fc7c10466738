"""Tests for data types, ports and payload encoding."""

import numpy as np
import pytest

from marketing_spaces.core.data_types import (
    DataType,
    ImageData,
    ModuleStatus,
    Port,
    PortDirection,
    decode_payload,
    encode_payload,
    is_compatible,
    is_empty_value,
)


def _input(*types):
    return Port(id="in-1", direction=PortDirection.INPUT, label="In", accepted_types=types)


class TestCompatibility:
    """Tests for the output/input compatibility rule."""

    def test_accepted_type(self):
        assert is_compatible(DataType.JSON, _input(DataType.JSON, DataType.TEXT))

    def test_rejected_type(self):
        assert not is_compatible(DataType.JSON, _input(DataType.TEXT))

    def test_mixed_is_not_a_wildcard(self):
        assert not is_compatible(DataType.IMAGE, _input(DataType.MIXED))
        assert not is_compatible(DataType.MIXED, _input(DataType.IMAGE))
        assert is_compatible(DataType.MIXED, _input(DataType.MIXED))

    def test_no_accepted_types(self):
        assert not is_compatible(DataType.TEXT, _input())


class TestModuleStatus:
    """Tests for ModuleStatus helpers."""

    @pytest.mark.parametrize("status", [ModuleStatus.DONE, ModuleStatus.WARNING])
    def test_success_statuses_carry_outputs(self, status):
        assert status.has_outputs
        assert status.is_terminal

    @pytest.mark.parametrize("status", [
        ModuleStatus.IDLE,
        ModuleStatus.RUNNING,
        ModuleStatus.ERROR,
        ModuleStatus.FATAL_ERROR,
        ModuleStatus.INVALID,
    ])
    def test_other_statuses_have_no_outputs(self, status):
        assert not status.has_outputs

    def test_error_statuses(self):
        assert ModuleStatus.ERROR.is_error
        assert ModuleStatus.FATAL_ERROR.is_error
        assert not ModuleStatus.INVALID.is_error

    def test_string_values(self):
        assert ModuleStatus("fatal_error") is ModuleStatus.FATAL_ERROR


class TestEmptyValue:
    """Tests for is_empty_value."""

    @pytest.mark.parametrize("value", [None, "", [], {}, (), b""])
    def test_empty(self, value):
        assert is_empty_value(value)

    @pytest.mark.parametrize("value", ["x", [0], {"a": None}, 0, False])
    def test_not_empty(self, value):
        assert not is_empty_value(value)


class TestPort:
    """Tests for Port serialization."""

    def test_input_round_trip(self):
        port = Port(
            id="in-2",
            direction=PortDirection.INPUT,
            label="Icons",
            accepted_types=(DataType.IMAGE,),
            required=False,
        )
        restored = Port.from_dict(port.to_dict())

        assert restored == port

    def test_output_dict(self):
        port = Port(id="out-1", direction=PortDirection.OUTPUT, label="Out", data_type=DataType.TEXT)
        data = port.to_dict()

        assert data["type"] == "output"
        assert data["dataType"] == "text"
        assert "acceptedTypes" not in data


class TestImageData:
    """Tests for ImageData."""

    def test_from_numpy_uint8(self):
        arr = np.full((4, 6, 3), 255, dtype=np.uint8)
        image = ImageData.from_numpy(arr)

        assert image.size == (6, 4)
        assert image.pixels.dtype == np.float32
        assert image.pixels.max() == pytest.approx(1.0)

    def test_from_numpy_grayscale(self):
        image = ImageData.from_numpy(np.zeros((5, 5), dtype=np.float32))
        assert image.channels == 3

    def test_encode_decode_payload(self):
        image = ImageData.from_numpy(np.zeros((8, 8, 4), dtype=np.uint8), label="tile")
        payload = {"icons": [image], "name": "demo"}

        encoded = encode_payload(payload)
        assert encoded["icons"][0]["kind"] == "image"
        assert encoded["icons"][0]["width"] == 8

        decoded = decode_payload(encoded)
        assert isinstance(decoded["icons"][0], ImageData)
        assert decoded["icons"][0].label == "tile"
        assert decoded["icons"][0].size == (8, 8)
        assert decoded["name"] == "demo"
