# firecracker_sdk

Python helpers for preparing and launching Firecracker microVMs.

The package builds the command lines for the `firecracker` and `jailer`
binaries. It describes drives and kernel boot arguments, and it orders the
named steps that set a machine up. It can send the metadata-store requests
over the VMM's Unix socket and turn CNI results into network settings for the
guest. It has no dependencies outside the standard library.

## Installation

```
pip install .
```

To run the tests, install the `test` extra and run `pytest`:

```
pip install ".[test]"
pytest
```

## Modules

### `firecracker_sdk.kernelargs`

`parse_kernel_args(raw_string)` splits a kernel command line on whitespace and
returns a `KernelArgs`, a `dict` subclass:

- `key=value` maps to `"value"`. Only the first `=` splits, so `a=b=c` maps `a` to `"b=c"`.
- `key=` maps to `""`.
- A bare `key` maps to `None`.

`str()` on a `KernelArgs` turns it back into a command line in insertion order.

### `firecracker_sdk.command_builder`

`VMCommandBuilder` is a frozen dataclass that builds the command that starts
the VMM. Each `with_*` method returns a new builder and leaves the old one
unchanged:

- `with_bin`: the binary to run. When it is empty, the builder uses `"firecracker"`.
- `with_args`: replaces the arguments.
- `add_args`: appends arguments.
- `with_socket_path`: sets the API socket path.
- `with_stdin`, `with_stdout`, `with_stderr`: set the standard streams.

`socket_path_args()` returns `["--api-sock", path]`, or `None` when no socket
path is set.

`build()` returns a `Command` whose `args` are the binary, then the socket
arguments, then the other arguments. `Command.start()` launches the process
with `subprocess.Popen`. A stream that has no file descriptor, such as an
`io.BytesIO` or `io.StringIO`, is connected through a pipe and copied in a
background thread. `Command.wait()` waits for the process and for those
copies. `DEFAULT_VM_COMMAND_BUILDER` uses `firecracker` and the interpreter's
own standard streams.

### `firecracker_sdk.drives`

`new_drives_builder(root_drive_path)` returns a `DrivesBuilder` with a
read-write root drive whose id is `"root_drive"`. `add_drive(path, read_only,
*opts)` adds a drive. Added drives get the ids `"0"`, `"1"`, … in order.
`with_root_drive(path, *opts)` replaces the root drive.

The following options change a `Drive` as it is created:

- `with_drive_id`
- `with_read_only`
- `with_partuuid`
- `with_rate_limiter`

`build()` returns copies of all drives, with the root drive last.

### `firecracker_sdk.handlers`

A `Handler` is a name and a function that is called with a machine object.
`HandlerList` is an immutable, ordered list of handlers. Each of these methods
returns a new list:

- `append`, `prepend`
- `append_after(name, handler)`: inserts the handler after every handler called `name`.
- `swap(handler)`: replaces every handler with the same name.
- `swappend(handler)`: swaps when the name is present and appends otherwise.
- `remove(name)`
- `clear()`

`has(name)`, `len()` and iteration are supported. `run(machine)` calls each
handler in order. It logs failures and re-raises the first exception.

`Handlers` holds a `validation` list and an `fc_init` list. `Handlers.run`
runs the validation list, unless `machine.cfg.disable_validation` is true, and
then the init list.

The module also provides the following:

- The built-in handlers, such as `START_VMM_HANDLER`, `ATTACH_DRIVES_HANDLER`
  and `CONFIG_MMDS_HANDLER`, and the validation handlers.
- `new_set_metadata_handler(metadata)` and `new_create_balloon_handler(...)`.
- `default_handlers()`.

The built-in handlers call methods and attributes of the machine they are
given, such as `start_vmm()`, `attach_drives(*drives)`, `cfg`, `logger` and
`cleanup_funcs`. The caller supplies that machine object.

`HandlersAdapter` is the abstract base class for anything that rewrites a
`Handlers` in place through `adapt_handlers`.

### `firecracker_sdk.jailer`

`JailerCommandBuilder` is an immutable builder for the jailer command line. It
has `with_bin`, `with_id`, `with_uid`, `with_gid`, `with_exec_file`,
`with_numa_node`, `with_chroot_base_dir`, `with_net_ns`, `with_daemonize`,
`with_firecracker_args` and the three stream setters.

`args()` returns the arguments without the binary, in this order:

1. `--id`, `--uid`, `--gid` and `--exec-file`.
2. `--cgroup cpuset.mems=N --cgroup cpuset.cpus=...`, added only when
   `get_numa_cpuset(node)` can read the node's CPU list from sysfs.
3. `--chroot-base-dir`, `--netns` and `--daemonize`, when they are set.
4. `--` followed by the Firecracker arguments.

`build()` returns a `Command`.

`JailerConfig` holds the jailer settings.

`NaiveChrootStrategy(kernel_image_path)` is a `HandlersAdapter`. It inserts
`link_files_handler(...)` after the log-files handler, or raises
`RequiredHandlerMissingError` when that handler is absent. The link handler
hard-links the kernel, the initrd, the drives and the log and metrics FIFOs
into `<chroot_base_dir>/<exec file name>/<id>/root`. It then rewrites those
paths relative to the chroot and gives the FIFOs to the jailer's uid and gid.
It raises `MissingJailerConfigError` when the machine has no jailer
configuration.

### `firecracker_sdk.operations`

`Operation` names an API call: its id, HTTP method and path. Two operations
are defined:

- `PUT_MMDS` (`PUT /mmds`)
- `PUT_MMDS_CONFIG` (`PUT /mmds/config`)

`Operation.read_response(code, body)` maps the server's reply to a result:

- 204 returns a `NoContent`.
- Any other 2xx returns a `NoContent` that carries the decoded `ErrorPayload`.
- 400 and every other code raise `OperationError`, whose `code`,
  `bad_request` and `fault_message` describe the failure.
- A body that is not valid JSON raises `ValueError`.

`OperationParams` holds the body and timeout; the default timeout is 30
seconds. `with_body` and `with_timeout` return changed copies. `encode_body`
returns the body as JSON, and dataclasses are converted first.

### `firecracker_sdk.transport`

`UnixSocketTransport(socket_path, logger=None, debug=False)` sends an
operation over HTTP on a Unix domain socket. `submit(operation, params)`
returns the result of `read_response`. With `debug` set, it logs each request
and reply.

```python
from firecracker_sdk.operations import PUT_MMDS, OperationParams
from firecracker_sdk.transport import UnixSocketTransport

transport = UnixSocketTransport("/tmp/fc.sock")
transport.submit(PUT_MMDS, OperationParams().with_body({"latest": {"id": "vm-1"}}))
```

### `firecracker_sdk.cni`

`firecracker_sdk.cni.cniutil` models a CNI result with `Result`, `Interface`,
`IPConfig`, `Route` and `DNS`, and provides these functions:

- `interface_ips(result, name, sandbox)`
- `filter_by_sandbox(sandbox, *ifaces)`: returns the interfaces inside the sandbox and those outside it.
- `ifaces_with_name(name, *ifaces)`
- `vm_tap_pair(result, vm_id)`: returns the VM pseudo-interface and the tap
  interface with the same name. It raises `LinkNotFoundError` when either is
  missing and `ValueError` when there is more than one.

`firecracker_sdk.cni.netlink` provides the following:

- `NetlinkOps`, the abstract set of tap and traffic-control operations.
- `LinkAttrs`, `QdiscNotFoundError`, `FilterNotFoundError` and `root_filter_handle()`.
- `MockNetlinkOps`, `MockLink` and `MockNetNS`, which are in-memory stand-ins.
  `MockNetlinkOps` returns the links it is given, raises only the errors it is
  configured with, and records `remove_link` and `remove_ingress_qdisc` calls.

`firecracker_sdk.cni.vmconf` provides the following:

- `static_network_conf_from(result, container_id, get_netns, netlink_ops)`
  builds a `StaticNetworkConf`. You pass in the function that opens a network
  namespace and the `NetlinkOps` that looks up the tap's MTU.
- `mtu_of(iface_name, net_ns, netlink_ops)` returns the MTU of one device.
- `StaticNetworkConf.ip_boot_param()` renders the kernel `ip=` value, for
  example `10.0.0.2::10.0.0.1:255.255.255.0::eth0:off:1.1.1.1:8.8.8.8:`.
  Only the first two nameservers are used, and routes, domains and resolver
  options are left out.

## Examples

Build and start the VMM:

```python
from firecracker_sdk.command_builder import VMCommandBuilder

cmd = (
    VMCommandBuilder()
    .with_bin("firecracker")
    .with_socket_path("/tmp/fc.sock")
    .add_args("--level", "Debug")
    .build()
)
process = cmd.start()
```

Describe the drives:

```python
from firecracker_sdk.drives import new_drives_builder, with_partuuid

drives = (
    new_drives_builder("/images/rootfs.ext4")
    .add_drive("/images/data.img", True, with_partuuid("made-up-uuid"))
    .build()
)
```

Build a jailer command:

```python
from firecracker_sdk.jailer import JailerCommandBuilder

cmd = (
    JailerCommandBuilder()
    .with_id("vm-1")
    .with_uid(123)
    .with_gid(100)
    .with_exec_file("/usr/bin/firecracker")
    .with_firecracker_args("--api-sock", "/run/firecracker.socket")
    .build()
)
```

Read and rewrite kernel arguments:

```python
from firecracker_sdk.kernelargs import parse_kernel_args

args = parse_kernel_args("console=ttyS0 reboot=k panic=1 ro")
args["ip"] = "10.0.0.2::10.0.0.1:255.255.255.0::eth0:off::"
print(str(args))
```

## What the package does not do

- There is no machine object that boots a VM from a configuration. The
  handlers call methods on a machine that the caller supplies.
- There is no API client beyond the two metadata-store operations. Calls for
  the machine configuration, boot source, drives, network interfaces, vsocks,
  logger, metrics, snapshots or the balloon have to be written on top of
  `Operation` and `UnixSocketTransport`.
- `NetlinkOps` has no implementation that changes real devices; only the
  in-memory `MockNetlinkOps` is included. No namespace opener is included
  either; `static_network_conf_from` takes one as an argument.
- There is no command-line tool.