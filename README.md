# dnsproxy

A small filtering DNS proxy. It listens for DNS queries over UDP and answers
A and AAAA questions for blacklisted domains (and their subdomains) itself.
Every other question is forwarded to an upstream DNS server, and the upstream
answer is relayed back to the client that asked.

## Installation

```
pip install .
```

For running the tests:

```
pip install .[test]
pytest
```

## Configuration

The proxy reads an INI file, `config.ini` in the current directory unless
another path is given with `-c`:

```ini
[server]
port = 53

[upstream_dns]
ipaddress = 8.8.8.8
port = 53

[blacklisted]
; NOERROR answers blocked A/AAAA queries with the addresses below;
; any other rcode (NXDOMAIN, REFUSED, ...) is returned as the response code
; instead, with no answers.
response = NOERROR
response_ip = 0.0.0.0
response_ipv6 = ::
file_with_domains = blacklisted.txt
```

- `[server] port` defaults to 53.
- `[upstream_dns] ipaddress` (IPv4) and `port` are required.
- `[blacklisted] response` is an rcode name (`NOERROR`, `FORMERR`,
  `SERVFAIL`, `NXDOMAIN`, `NOTIMP`, `REFUSED`, ...); it defaults to
  `NOERROR`. When it is `NOERROR`, both `response_ip` and `response_ipv6`
  must be set.
- `[blacklisted] file_with_domains` defaults to `blacklisted.txt`. A relative
  path is taken relative to the directory of the configuration file.

Any other section or key, or a value that does not parse, stops loading with
an error. Lines starting with `;` or `#` are comments, and `#` after
whitespace starts an inline comment.

The blacklist file holds one domain per line. A listed domain also blocks all
of its subdomains: if `example.com` is listed, `ads.example.com` is blocked
too. Blank lines and lines longer than 253 characters are skipped.

## Running

```
dnsproxy
dnsproxy -c /path/to/config.ini
```

On start the proxy logs the loaded configuration, binds `0.0.0.0` on the
configured port and prints `Started server on 0.0.0.0:<port>`. Once a second
it logs a line of traffic statistics: incoming and outgoing rates in MB/s,
the number of jobs waiting in the request and response worker pools, the
number of queries waiting for an upstream answer, and the total number of
queries received. Stop it with Ctrl-C. The command exits with status 1 if
the configuration or blacklist cannot be loaded or the socket cannot be
bound.

Responses are accepted only from the configured upstream address; they are
matched to the waiting query by message id and sent back to the client with
the client's original id.

## Library use

The packet codec can be used on its own:

```python
from dnsproxy.parser import parse_dns_packet
from dnsproxy.serializer import serialize_dns_packet

packet = parse_dns_packet(datagram)
print(packet.format())
wire = serialize_dns_packet(packet)
```

- `dnsproxy.records` holds the data model (`Header`, `Query`,
  `ResourceRecord`, `SOARecord`, `MXRecord`, `DnsPacket`), the enumerations
  `RecordType`, `QueryType`, `RecordClass`, `Rcode`, `Opcode`, and `DnsError`.
- `dnsproxy.parser` decodes headers, domain names (following compression
  pointers), questions, records and whole packets; malformed input raises
  `DnsError`. `parse_rcode("NXDOMAIN")` turns a name into an `Rcode`.
- `dnsproxy.serializer` has `PacketWriter`, which compresses repeated name
  suffixes, and `serialize_dns_packet`. Output is limited to 512 bytes;
  exceeding it, or a header announcing more entries than a section holds,
  raises `DnsError`.
- `dnsproxy.validation` checks headers, types, classes and labels.
- `dnsproxy.config` has `load_config(path)`, returning a `Config`, plus
  `iter_ini`, `parse_blacklist` and `load_blacklist_file`; problems raise
  `ConfigError`.
- `dnsproxy.proxy` has `is_domain_blocked`, `build_blocked_response` and the
  `DnsProxy` class, which runs over a `dnsproxy.server.UdpServer`.

## What it does not do

- It serves UDP over IPv4 only; there is no TCP listener and no IPv6 socket.
- It keeps no cache of answers: every non-blocked question goes upstream.
- Queries waiting for an upstream answer are never expired; an entry is only
  replaced when its id comes round again after 65536 forwarded queries.
- Only A and AAAA questions are filtered; other types for a blacklisted name
  are forwarded.