# dcafauth

Delegated CoAP authentication and authorization (DCAF) for Python: the
logic a constrained resource server uses to accept access tickets, that a
client uses to request and read them, and that an authorization manager
(AM) uses to issue them.

## Installation

    pip install dcafauth

To run the test suite:

    pip install "dcafauth[test]"
    pytest

## Modules

- `dcafauth.coap`: a small CoAP message model. `CoapPdu` holds code,
  type, message id, token, options (kept sorted by option number) and
  payload, with `add_option`, `option` and `options_of`. Helpers:
  `encode_uint`, `decode_uint`, `get_content_format`, `get_method` and
  `get_resource_uri` (raises `ValueError` if the path exceeds the given
  length).
- `dcafauth.address`: `resolve_address(host, port)` returns the first
  IPv4 or IPv6 datagram address as a `CoapAddress`. It raises
  `AddressError` if the host cannot be resolved. `CoapAddress.with_port`
  returns a copy with another port.
- `dcafauth.base64`: `encode` gives padded standard Base64. `decode`
  is lenient: it skips characters outside the alphabet and stops at the
  first `=`.
- `dcafauth.errors`: the result codes in `DcafResult` and the
  `DcafError` exception that carries one.
- `dcafauth.tickets`: `DcafKey`, `KeyType`, `Permission`, `Ticket`,
  `DeprecatedTicket`, `Nonce`, plus `parse_dcaf_key` (COSE_Key map to
  `DcafKey`), `parse_aif` (flat or nested AIF arrays) and `aif_allowed`.
  `TicketStore` keeps tickets, deprecated tickets and nonces. It handles
  lookup by session or sequence number, deprecation, expiry and the
  validity offset of a server nonce.
- `dcafauth.ticket_face`: `maybe_cose` tells a COSE_Encrypt0 token
  from a plain one. `parse_ticket_face` validates a ticket face (sequence
  number, deprecation, lifetime from `iat` or a stored nonce, `cnf` key,
  AIF scope) and returns a new `Ticket`.
- `dcafauth.context`: `DcafContext` (configured with `DcafConfig`)
  joins these for a server. It holds preset keys (`add_key`, `find_key`),
  the AM URI (`set_am_uri`, `parse_am_uri`, `AmUri`) and the ticket store.
  It checks requests with `is_authorized` and builds 4.01 responses with
  `set_sam_information` and 4.00 responses with `set_error_response`.
  `get_server_psk` finds the PSK for an incoming DTLS identity.
- `dcafauth.am`: the authorization manager. It offers `TicketRequest`,
  `parse_ticket_request`, `default_ticket_request`, `create_verifier`,
  `make_ticket_face` and `set_ticket_grant`.
- `dcafauth.client`: `Protocol`, `proto_from_scheme`,
  `make_ticket_request` (builds the request to the AM from the server's
  AS information) and `parse_ticket_grant`, which returns a
  `ClientTicket` with the ticket face, PSK identity and key.

## Example: a resource server

```python
from dcafauth.coap import CoapPdu
from dcafauth.context import DcafConfig, DcafContext, MEDIATYPE_DCAF_CBOR
from dcafauth.tickets import DcafKey

context = DcafContext(DcafConfig(am_uri="coaps://am.example.com"))
context.add_key(b"client-identity", DcafKey(data=b"secret"))

response = CoapPdu()
context.set_sam_information(MEDIATYPE_DCAF_CBOR, response)
# response is now 4.01 Unauthorized with the AS information as payload

psk = context.get_server_psk(b"client-identity", session=object())
```

Setting an AM URI resolves its host. If the name cannot be resolved,
`set_am_uri` raises `AddressError`, and the constructor only logs it.

With validity option 2 or 3 (`DcafConfig(validity_option=...)`), the AS
information also carries a fresh server nonce, which is stored in
`context.store`. Encrypted ticket faces are handed to `context.decrypt`,
a callable that you set and that returns the plaintext or `None`.

## Example: an authorization manager

```python
from dcafauth.am import parse_ticket_request, set_ticket_grant

context.set_ticket_callback(lambda session, request: True)
ticket_request = parse_ticket_request(request_pdu)
ticket = set_ticket_grant(context, session, ticket_request, response_pdu)
```

A request is granted only if the ticket callback returns a true value.
Without one the response is 4.03 Forbidden. A granted ticket gets a fresh
random AES-128 key, is stored in the context and is returned in a 2.01
response. If you set an `encrypt(key, plaintext)` attribute on the context
and the request names an audience, the ticket face is encrypted with that
audience's stored key.

## What the package does not do

The package does no network I/O. It does not encode CoAP messages to or
from the wire and does not open DTLS or TLS sessions. `DcafContext`
records the endpoints it would listen on but binds no sockets. COSE
encryption and decryption are not built in: they come from the
`encrypt` and `decrypt` callables you supply. There is no command-line
program.