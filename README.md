# contributoor

Building blocks for a service that sits next to an Ethereum beacon node:

- choosing which event-stream topics to subscribe to, including opt-in
  topics that need an explicit condition;
- reading the node's identity and decoding its attestation subnet bitfield;
- watching the attestation subnets actually seen on the wire and signalling
  when they drift too far from what the node advertises;
- loading and validating the YAML configuration file.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Decoding attestation subnets

The `attnets` field of a node's metadata is a hex bitfield, least
significant bit first: bit 0 of byte 0 is subnet 0, bit 0 of byte 1 is
subnet 8, and so on. Only the first 8 bytes (subnets 0 to 63) are read.

```python
from contributoor.node_identity import parse_attnets_bitmask

parse_attnets_bitmask("0x0000000000000c00")   # [50, 51]
parse_attnets_bitmask("0100000000000000")     # [0]
```

A leading `0x` is optional; invalid or odd-length hex raises `ValueError`.

`NodeIdentity` fetches `/eth/v1/node/identity` from a beacon node, sending
any headers it was given, and exposes the decoded subnets:

```python
from contributoor.node_identity import NodeIdentity

identity = NodeIdentity("http://localhost:5052", {"Authorization": "Bearer token"})
identity.start()
print(identity.attnets())
identity.stop()
```

`start()` raises `NodeIdentityError` on a non-200 status, a response that
is not valid JSON, or an empty peer ID. Before a successful `start()`,
`attnets()` returns an empty list. The fetched data is kept as a
`NodeIdentityData` with its `NodeIdentityMetadata`.

## Topics

`contributoor.topics.get_default_all_topics()` lists every supported topic
(`block`, `block_gossip`, `head`, `finalized_checkpoint`, `blob_sidecar`,
`chain_reorg`, `single_attestation`) and `get_opt_in_topics()` those that
are only subscribed to when a registered condition allows it
(`single_attestation`).

A `TopicManager` built from a `TopicConfig` decides the final list:

```python
from contributoor.topic_manager import (
    TopicConfig,
    TopicManager,
    create_attestation_subnet_condition,
)
from contributoor.topics import get_default_all_topics, get_opt_in_topics

config = TopicConfig(
    all_topics=get_default_all_topics(),
    opt_in_topics=get_opt_in_topics(),
    attestation_enabled=True,
    attestation_max_subnets=2,
)
manager = TopicManager(config)

subnets = identity.attnets()
manager.register_condition(
    "single_attestation", create_attestation_subnet_condition(len(subnets), 2)
)
manager.exclude_topic("blob_sidecar")
print(manager.get_enabled_topics())
```

A condition is a callable taking no arguments and returning a bool; a
condition that raises excludes its topic. Topics without a condition are
included unless they are opt-in or excluded.

### Attestation subnet tracking

- `set_advertised_subnets(subnets)` records what the node advertises and,
  when there are at most `attestation_max_subnets` of them (and that limit
  is above zero), picks one at random for forwarding; `is_active_subnet`
  answers true only for that one.
- `record_attestation(subnet_id, slot)` counts, per detection window of
  `mismatch_detection_window` slots, the subnets seen that are not
  advertised. When that count exceeds `subnet_high_water_mark`
  `mismatch_threshold` times, and at least `mismatch_cooldown` seconds
  have passed since the last signal, the `threading.Event` returned by
  `needs_reconnection()` is set. Nothing is tracked unless
  `attestation_enabled` is true.
- `reset_after_reconnection()` clears the tracking state and arms a fresh
  event; `cooldown_period()` returns the cooldown in seconds.
- `start_subnet_refresh(refresh_interval, fetcher)` calls `fetcher` every
  `refresh_interval` seconds in a background thread and re-selects the
  forwarding subnet when the advertised list changes (a `None` result is
  ignored); `stop_subnet_refresh()` ends it.

`contributoor.beacon.BeaconWrapper(topic_manager, current_slot)` passes
subnet questions on to its topic manager (`is_active_subnet`,
`record_seen_subnet`, `needs_reconnection`, `topic_manager`) and answers
conservatively without one. `current_slot` is a callable returning the
wallclock slot or `None`; `is_slot_from_unexpected_network(slot)` uses it
with `is_slot_difference_too_large`, which flags slots more than 10000
apart, a sign an event comes from another network.

## Configuration

```python
from contributoor.config import new_config_from_path, new_default_config, parse_address

cfg = new_config_from_path("config.yaml")
cfg.set_log_level("debug")
host, port = cfg.get_metrics_host_port()

parse_address(":8080", "127.0.0.1", "9090")           # ("127.0.0.1", "8080")
parse_address("http://localhost:8080", "h", "p")      # ("localhost", "8080")
```

The YAML file uses camelCase keys (`beaconNodeAddress`, `runMethod`,
`outputServer`, `attestationSubnetCheck`, ...); `runMethod` takes names
such as `RUN_METHOD_DOCKER`. `beaconNodeAddress` is required. Unknown keys
or values of the wrong type raise `ConfigValidationError`; unreadable files
raise `OSError` and malformed YAML `yaml.YAMLError`. `config_from_mapping`
does the same for an already decoded document.

`parse_address` accepts `host:port`, `:port` or a URL and falls back to the
given defaults when the address is empty or unusable. The
`get_*_host_port` methods return empty strings when their address is unset.
The `set_*` methods leave a field unchanged when given an empty value,
except `set_network`, which raises `ValueError`. `is_run_method_systemd`
reports whether the run method is `RunMethod.SYSTEMD` or one of
`INVOCATION_ID`, `JOURNAL_STREAM` or `NOTIFY_SOCKET` is set.
`NetworkName` and `RunMethod` have a `display_name()`.

The beacon-node side has its own `EthereumConfig` in
`contributoor.ethereum_config`; `new_default_config()` there returns the
default subnet-tracking settings and `validate()` raises
`EthereumConfigError` for a missing address or a `max_subnets` outside
0 to 64 when tracking is enabled.

## What this package does not do

It does not open the beacon node's event stream, decorate or forward
events, export metrics, or provide a command to run; it has no sinks and no
server. It supplies the decisions and checks such a service relies on.