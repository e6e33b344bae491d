# elfstage

elfstage reads little-endian 64-bit ELF executables and shared libraries. It
works out what a small, self-contained loader has to do with them: which memory
regions to map, the dynamic symbols, the GOT and PLT entries, and the function
and variable relocations. From these it builds a linked image and resolves
lazily bound functions. Everything is computed as plain Python data.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Command line

```
elfstage path/to/program
```

This reads the named ELF file and each shared library named in its dynamic
section. Library names are opened as given, so relative names are resolved
against the current directory. The command places a position-independent
executable at `0x7f0000000000` and the libraries one after another above it,
each rounded up to whole pages. It then links the image and prints:

* the load offset of the executable;
* each of its memory regions;
* the address of every library;
* the number of GOT entries;
* the entry point.

If no file name is given, or a file cannot be opened or parsed, the command
prints an error message and exits with status 1. An executable that is neither
`ET_EXEC` nor position independent is rejected in the same way.

## Library use

### Parsing an image

```python
from elfstage.elf import ElfError, find_section_header, read_elf

try:
    elf = read_elf("build/dynamic")
except ElfError as exc:
    print("not a usable ELF file:", exc)
else:
    bss = find_section_header(elf.section_headers, ".bss")
```

`read_elf` can also raise `OSError` if the file cannot be opened. `parse_elf`
parses bytes that are already in memory. An `ElfData` holds:

* the program headers and section headers;
* the entry point and type;
* the word size, endianness and OS ABI;
* a `DynamicData` with symbols, GOT entries, relocations and needed libraries,
  or `None` for static images.

`relocation_type_name` and `symbol_type_name` turn raw type numbers into names
such as `R_X86_64_JUMP_SLOT` or `STT_FUNC`, or return `"Unknown"`.

### Planning the layout

* `elfstage.loader_lib.get_memory_regions` turns `PT_LOAD` program headers into
  aligned `MemoryRegion` values. It raises `LoaderError` when a segment has zero
  alignment.
* `MemoryRegion.protection()` converts segment permission bits to
  `PROT_READ`/`PROT_WRITE`/`PROT_EXEC`.
* `elfstage.memory_map.reserve_region_space` returns copies of the regions moved
  to a base address.
* `reserved_length` gives the total size of the regions.
* `map_flags` gives the mmap flags for a region, given a kernel release string.
  It adds `MAP_FIXED_NOREPLACE` from release 5 on.
* `Arena` is a bump allocator with a fixed capacity. It hands out
  pointer-aligned offsets and raises `MemoryError` when the capacity is
  exceeded.

### Linking

`elfstage.loader_lib` has the functions that build the runtime tables for one
object at a given load offset:

* `get_function_relocations`
* `find_symbols`
* `get_runtime_got`

It also has `find_runtime_symbol`, `find_runtime_relocation` and
`find_got_entry`, which look entries up in those tables and return `None` when
nothing matches.

`elfstage.linker.link_image` puts an executable and its libraries together:

```python
from elfstage.elf import read_elf
from elfstage.linker import link_image, resolve_function

exe = read_elf("app")
lib = read_elf("libdynamic.so")
image = link_image(
    ("app", exe),
    [("libdynamic.so", lib, 0x7F0000100000)],
    0x7F0000000000,   # base for a position-independent executable
    0x7D7D0000,       # value given to lazy-binding GOT slots
    0x7D7E0000,       # table of per-object load offsets
)
```

The resulting `LinkedImage` records the following:

| Field | Contents |
| --- | --- |
| `writes` | memory words to store, keyed by address |
| `copies` | `(destination, source, size)` copies for copy relocations |
| `zeroed` | `.bss` ranges to clear |
| `got_entries` | the resolved GOT |
| `var_relocations` | the variable relocations |
| `entry` | the entry address |

`resolve_function(image, lib_dyn_offset, relocation_index)` binds one PLT slot,
as a lazy binding callback would. It records the GOT update in `image.writes`
and returns the function's address. Failures raise `LoaderError`.

### Runtime helpers

```python
from elfstage.formatting import format_printf, strerror

format_printf("%s has %d entries at %x\n", ".got", 3, 255)
# '.got has 3 entries at ff\n'
strerror(2)
# 'No such file or directory'
```

* `format_printf` understands `%s`, `%c`, `%x`, `%p` and `%d`, with a `z`
  prefix for 64-bit values.
* `log_message` writes `LEVEL: message` to stderr for levels at or above
  `elfstage.formatting.LOG_LEVEL`.
* `int_pow` raises a number to a whole power.

`elfstage.winruntime` holds helpers from a minimal Windows runtime shim:

* `split_command_line` splits a command line on single spaces into at most 100
  arguments.
* `handle_to_fd` and `fd_to_handle` convert between the standard output and
  error handles and file descriptors 1 and 2.
* `protection_from_windows` converts `PAGE_EXECUTE_READWRITE`, the only value
  it accepts.
* `query_region` is a stand-in for a memory query on a page-aligned address.

## What it does not do

elfstage never maps memory, writes to a process or runs the program. Its
results describe what a loader would do, as data.

Only little-endian 64-bit x86-64 ELF images are handled. Windows PE images
cannot be read or loaded.