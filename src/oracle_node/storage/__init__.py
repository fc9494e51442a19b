from .arweave import ArweaveStorage, hex_to_key, key_to_hex, normalize_key

__all__ = ["ArweaveStorage", "hex_to_key", "key_to_hex", "normalize_key"]
