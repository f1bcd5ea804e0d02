# buildnest

A library of building blocks for managing container image builders: an
on-disk store of named builder instances, a registry of build drivers,
Kubernetes deployment manifests for a BuildKit daemon, and parsers for the
flags a build command takes.

## Installation

```
pip install buildnest
```

To run the tests:

```
pip install "buildnest[test]"
pytest
```

## Modules

### `buildnest.platforms`

`Platform` is a frozen dataclass (`os`, `architecture`, `variant`,
`os_version`, `os_features`). `parse_platform` reads one `os[/arch[/variant]]`
specifier; `parse` reads a list of specifiers, each of which may itself be a
comma separated list, with `local` standing for the host (`default_spec()`).
`normalize` gives the canonical form (`x86_64` becomes `amd64`, `arm` gets
`v7`, and so on), `format_platform` writes `os/arch[/variant]`, `format_all`
formats a list, `dedupe` drops repeats, and `format_in_groups` formats several
groups once each, marking the first group with `*`. Invalid specifiers raise
`ValueError`.

### `buildnest.nodegroup`

`NodeGroup` (`name`, `driver`, `nodes`, `dynamic`) holds `Node` objects.
`NodeGroup.update(name, endpoint, platforms, endpoints_set, action_append,
flags, config_file, driver_opts)` changes an existing node or appends a new
one (naming it after the group when no name is given, and loading
`config_file` with `load_config_files`). A node claiming platforms removes
them from the other nodes, and duplicate endpoints are rejected.
`NodeGroup.leave(name)` removes a node but never the last one.
`validate_name` checks a name and returns it lower-cased. Errors are raised
as `ValueError`.

### `buildnest.store`

`Store(root)` creates `instances/` and `defaults/` under `root`.
`Store.txn()` is a context manager that holds a file lock on the store and
yields a `Txn`:

- `list()` returns every saved `NodeGroup`, sorted by name;
- `node_group_by_name(name)` loads one, raising `FileNotFoundError` when it
  is missing;
- `save(node_group)` writes it atomically; `remove(name)` deletes it;
- `set_current(key, name, global_, default)` selects the current builder for
  an endpoint key, for every key when `global_` is set, and remembers it as
  that key's default when `default` is set;
- `current(key)` returns the current builder for the key, falling back to the
  key's default, or `None`.

### `buildnest.confutil`

`config_dir(docker_config_path)` returns `$BUILDX_CONFIG` if set, else a
`buildx` directory beside the given docker config file.
`default_config_file(docker_config_path)` returns `buildkitd.default.toml` in
that directory if it exists, else `None`. `load_config_files(path)` reads a
BuildKit TOML config, collects the registry CA, key and certificate files it
names (each read up to 1 MiB) under `certs/<registry>/`, rewrites their paths
to `/etc/buildkit/...`, and returns a mapping of relative paths to bytes with
the rewritten config under `buildkitd.toml`. Failures raise
`FileNotFoundError` or `ConfigError`.

### `buildnest.buildflags`

- `parse_cache_entry(values)` → list of `CacheOptionsEntry`; bare references
  become `registry` entries, and `gha` entries take `token` and `url` from
  `ACTIONS_RUNTIME_TOKEN` and `ACTIONS_CACHE_URL`, being skipped if either is
  still missing.
- `parse_outputs(values)` → list of `ExportEntry`; a bare path is a `local`
  output, `-` is a tar stream to stdout (refused when stdout is a terminal),
  `oci`/`docker`/`tar` destinations are opened for writing, and `registry`
  becomes `image` with `push=true`.
- `parse_entitlements(values)` → list of `Entitlement`
  (`security.insecure`, `network.host`).
- `parse_secret(value)` / `parse_secret_specs(values)` → `SecretSource`
  objects from `id=...,src=...` or `type=env,...` values.
- `parse_ssh(value)` / `parse_ssh_specs(values)` → `AgentConfig` objects from
  `id` or `id=path1,path2` values.

### `buildnest.driver`

Defines the abstract `Driver` and `Factory`, `Status`, `Feature`, `Info`,
`InitConfig`, the `DriverNotRunning` and `DriverNotConnecting` errors, and the
image names `DEFAULT_IMAGE`, `QEMU_IMAGE` and `DEFAULT_ROOTLESS_IMAGE`.
`register` adds a factory; `get_factory`, `get_default_factory` (lowest
priority wins) and `get_factories` look them up. `get_driver` builds an
`InitConfig`, creates a driver and wraps it in `CachedDriver`, whose
`client()` is created only once. `boot(driver, logger)` bootstraps a driver
that is not running and returns its client, retrying briefly.

### Driver factories

Importing a module registers its factory.

- `buildnest.remote`: `RemoteFactory` (`remote`) accepts the driver options
  `servername`, `cacert`, `cert` and `key` (absolute paths); once any is set,
  all three files are required. `is_valid_endpoint` accepts `tcp`, `unix`,
  `ssh`, `docker-container` and `kube-pod` URLs. `RemoteDriver.client()`
  opens a socket to a `tcp` or `unix` endpoint, wrapped in TLS when
  configured.
- `buildnest.docker_driver`: `DockerFactory` (`docker`) creates a
  `DockerDriver` over any object with `server_version()` and
  `dial_hijack(url, proto, meta)` methods.

### `buildnest.manifest` and `buildnest.kubernetes`

`new_deployment(DeploymentOpt)` returns a Kubernetes Deployment and its
ConfigMaps as plain dictionaries, with optional QEMU init container, rootless
settings, node selector, `Toleration` entries and resource requests/limits.
`kubernetes.process_driver_opts(deployment_name, namespace, config)` turns
driver options (`image`, `namespace`, `replicas`, `requests.*`, `limits.*`,
`rootless`, `nodeselector`, `tolerations`, `loadbalance`, `qemu.install`,
`qemu.image`) into a `DeploymentOpt`, a load-balance mode and a namespace.
`buildx_name_to_deployment_name` turns `buildx_buildkit_loving_mendeleev0`
into `loving-mendeleev0`.

### `buildnest.progress`

`Vertex`, `VertexStatus`, `VertexLog` and `SolveStatus` describe progress.
`wrap(name, logger, fn)` runs `fn` with a `SubLogger` as a vertex,
`write(writer, name, fn)` records a failure on the vertex and returns it,
`from_reader(writer, name, reader)` lasts until the reader is drained.
`with_prefix` and `reset_time` wrap a writer to prefix vertex names or shift
times to start from now.

### `buildnest.waitmap` and `buildnest.logutil`

`WaitMap.get(*keys, timeout=None)` blocks until every key has been `set`,
raising `TimeoutError` on timeout. `LogsFilter(levels, *filters)` drops
records at those levels containing any filter string, `LevelFormatter`
writes `LEVEL: message`, and `pause(logger)` holds back a logger's stream
output until the returned callable is called.

## Example

```python
from buildnest.store import Store
from buildnest.nodegroup import NodeGroup

store = Store("/tmp/builders")
with store.txn() as txn:
    group = NodeGroup(name="mybuild", driver="remote")
    group.update("node0", "tcp://localhost:1234", ["linux/amd64"],
                 True, False, None, "", None)
    txn.save(group)
    txn.set_current("default", "mybuild", False, True)
    print(txn.current("default").name)
```

## What it does not do

- There is no command-line program; everything is used from Python.
- There is no driver that creates and runs a BuildKit container through
  Docker. The Kubernetes support stops at option handling and manifests: no
  factory is registered and nothing talks to a cluster.
- Driver clients are plain connections: `RemoteDriver` returns a socket and
  `DockerDriver` returns whatever `dial_hijack` gives. No BuildKit API is
  spoken over them, and `ssh`, `docker-container` and `kube-pod` endpoints
  cannot be dialled (they raise `DriverNotConnecting`).
- Progress updates are only passed to writers; nothing draws them on a
  terminal.