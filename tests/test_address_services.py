from batchsend.services.address import (
    ZERO_ADDRESS,
    AddressValidator,
    is_valid_evm_address,
)


def test_address_validation_lowercase_and_uppercase():
    assert is_valid_evm_address("0x1234567890abcdef1234567890abcdef12345678") is True
    assert is_valid_evm_address("0x1234567890ABCDEF1234567890ABCDEF12345678") is True


def test_address_validation_checksum():
    assert is_valid_evm_address("0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed") is True
    assert is_valid_evm_address("0x5aAeb6053f3E94C9b9A09f33669435E7Ef1BeAed") is False


def test_address_validation_shape():
    assert is_valid_evm_address("0x1234") is False
    assert is_valid_evm_address("1234567890abcdef1234567890abcdef12345678") is False
    assert is_valid_evm_address("0xZZ34567890abcdef1234567890abcdef12345678") is False
    assert is_valid_evm_address("") is False


def test_validator_rejects_zero_address_by_default():
    assert AddressValidator().is_valid_recipient(ZERO_ADDRESS) is False
    assert AddressValidator(allow_zero_address=True).is_valid_recipient(ZERO_ADDRESS) is True


def test_validator_blocklist_is_case_insensitive():
    blocked = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
    validator = AddressValidator(blocked=frozenset([blocked]))

    assert validator.is_valid_recipient(blocked.lower()) is False
    assert validator.is_valid_recipient("0x1111111111111111111111111111111111111111") is True
