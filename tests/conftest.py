import copy

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

BASE_DESCRIPTOR = {
    "name": "sysmod",
    "program_id": "0x0100000000000042",
    "main_thread_stack_size": "0x4000",
    "main_thread_priority": 49,
    "main_thread_core_number": 3,
    "address_space_type": 3,
    "is_64_bit": True,
    "memory_region": 2,
    "fs_access_control": {"flags": "0x0000000000000001"},
    "accessed_services": ["sm:", "fsp-srv"],
    "hosted_services": ["aa"],
    "kernel_capabilities": [
        {"type": "thread_info", "value": {
            "highest_priority": 0, "lowest_priority": 63, "min_core_number": 0, "max_core_number": 3}},
        {"type": "enable_system_calls", "value": {"svcSetHeapSize": "0x01", "svcExitProcess": "0x07"}},
        {"type": "map", "value": {"address": "0x70000", "size": "0x1", "is_ro": True, "is_io": False}},
        {"type": "handle_table_size", "value": 512},
        {"type": "misc_params", "value": "System"},
    ],
}


@pytest.fixture
def descriptor_dict():
    return copy.deepcopy(BASE_DESCRIPTOR)


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def pem_path(tmp_path, rsa_key):
    p = tmp_path / "acid.pem"
    p.write_bytes(rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    return p
