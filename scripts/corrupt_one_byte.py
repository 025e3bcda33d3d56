import sys
from pathlib import Path

def main():
    if len(sys.argv) != 2:
        print("Usage: corrupt_one_byte.py <npdm>")
        raise SystemExit(2)

    p = Path(sys.argv[1])
    b = bytearray(p.read_bytes())
    if len(b) < 0x80:
        print("File too small to corrupt safely.")
        raise SystemExit(2)

    # META is 0x80 bytes; the ACI0 offset field lives at 0x70.
    # Flipping its low bit makes the containers overlap.
    idx = 0x70
    b[idx] ^= 0x01
    p.write_bytes(bytes(b))
    print(f"Corrupted 1 byte at offset {idx:#x} in {p}")

if __name__ == "__main__":
    main()
