from .address import AddressValidator, is_valid_evm_address
from .entries import EntryFileError, parse_transfer_csv
from .keys import KeyLoadError, load_account, load_keystore

__all__ = [
    "AddressValidator",
    "is_valid_evm_address",
    "EntryFileError",
    "parse_transfer_csv",
    "KeyLoadError",
    "load_account",
    "load_keystore",
]
