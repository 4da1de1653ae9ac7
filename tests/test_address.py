"""
Tests for item address parsing.
"""

import pytest

from s7plc.address import AddressParser, parse_address
from s7plc.datatypes import TypeId, TypeKind
from s7plc.error import S7AddressError, S7BadAddressError, S7BitTypeMismatchError, S7UnknownTypeError


@pytest.mark.address
class TestAddressParser:
    def setup_method(self) -> None:
        self.parser = AddressParser()

    def test_scalar(self) -> None:
        item = self.parser.parse("DB21.4:float")
        assert item.code == "DB21.4:float"
        assert item.db_number == 21
        assert item.byte_offset == 4
        assert item.bit_offset == 0
        assert item.logical_type == TypeId.FLOAT
        assert item.element_count == 1
        assert not item.is_array
        assert item.kind == TypeKind.SCALAR

    def test_bit(self) -> None:
        item = self.parser.parse("DB21.12.5:bit")
        assert item.byte_offset == 12
        assert item.bit_offset == 5
        assert item.bit_address == 101
        assert item.kind == TypeKind.BIT

    def test_bit_without_offset(self) -> None:
        item = self.parser.parse("DB1.3:bool")
        assert item.logical_type == TypeId.BIT
        assert item.bit_offset == 0

    def test_array(self) -> None:
        item = self.parser.parse("DB5.2:word[4]")
        assert item.logical_type == TypeId.UINT16
        assert item.element_count == 4
        assert item.is_array
        assert item.kind == TypeKind.ARRAY
        assert item.read_count == 4

    def test_string_read_count(self) -> None:
        item = self.parser.parse("DB1.100:string[20]")
        assert item.element_count == 20
        assert item.read_count == 22
        assert item.kind == TypeKind.STRING

    def test_alias_resolution(self) -> None:
        assert self.parser.parse("DB1.0:dint").logical_type == TypeId.INT32
        assert self.parser.parse("DB1.0:int").logical_type == TypeId.INT16
        assert self.parser.parse("DB1.0:byte").logical_type == TypeId.UINT8

    @pytest.mark.parametrize(
        "address",
        [
            "",
            "DB",
            "DB21",
            "DB21.",
            "DB21.0",
            "DB21.0:",
            "M10.0:bit",
            "db21.0:int16",
            "DB21.0:int16[",
            "DB21.0:int16[]",
            "DB21.0:int16[2",
            "DB21.0:int16[2]x",
            "DB21.0.:bit",
            "DB21.0:int16 ",
            "DB-1.0:int16",
        ],
    )
    def test_malformed(self, address) -> None:
        with pytest.raises(S7BadAddressError) as excinfo:
            self.parser.parse(address)
        assert excinfo.value.address == address

    def test_error_column(self) -> None:
        with pytest.raises(S7BadAddressError) as excinfo:
            self.parser.parse("DB21.x:int16")
        assert excinfo.value.column == 5

    def test_unknown_type(self) -> None:
        with pytest.raises(S7UnknownTypeError) as excinfo:
            self.parser.parse("DB21.0:double")
        assert excinfo.value.address == "DB21.0:double"
        assert excinfo.value.column == 7

    def test_bit_type_mismatch(self) -> None:
        with pytest.raises(S7BitTypeMismatchError) as excinfo:
            self.parser.parse("DB21.0.1:int16")
        assert excinfo.value.address == "DB21.0.1:int16"

    @pytest.mark.parametrize("address", ["DB21.0.8:bit", "DB70000.0:int16", "DB1.0:int16[0]", "DB1.0:int16[65536]", "DB1.2097152:uint8"])
    def test_out_of_range(self, address) -> None:
        with pytest.raises(S7BadAddressError):
            self.parser.parse(address)

    @pytest.mark.parametrize("address", ["DB1.0:string[255]", "DB1.0:string[65534]"])
    def test_string_too_long(self, address) -> None:
        with pytest.raises(S7BadAddressError) as excinfo:
            self.parser.parse(address)
        assert excinfo.value.column == 13

    def test_longest_string(self) -> None:
        assert self.parser.parse("DB1.0:string[254]").read_count == 256

    def test_errors_share_base(self) -> None:
        for address in ("bad", "DB1.0:nope", "DB1.0.1:float"):
            with pytest.raises(S7AddressError):
                self.parser.parse(address)


@pytest.mark.address
def test_parse_address() -> None:
    item = parse_address("DB21.0:int32")
    assert (item.db_number, item.byte_offset, item.logical_type) == (21, 0, TypeId.INT32)
    assert item == parse_address("DB21.0:int32")
