# pagehttp

Building blocks for an HTTP server that answers requests by running `.sql`
files and by serving static files from a web root. Only the standard library
is needed at run time.

## Modules

### `pagehttp.request_variables`

Turns `(name, value)` pairs from query strings, forms and cookies into
parameter maps (`dict[str, str | list[str]]`).

- `param_map(pairs)`: a name ending in `[]` loses the suffix and always
  holds a list. A plain name that appears more than once keeps its last value.
- `merge_values(old, new)`: two single values give the newer one. Any other
  combination gives a list with the old values first.
- `as_json_str(value)`: returns single values unchanged and renders lists as
  a compact JSON array.

### `pagehttp.request_info`

- `extract_request_info(method, path, query_string, headers, body, client_ip, scheme, max_uploaded_file_size, upload_dir)`
  builds a `RequestInfo` holding:
  - method, path and protocol;
  - GET and POST variables;
  - uploaded files, as `UploadedFile` objects;
  - headers, with lower-cased names;
  - cookies;
  - the client IP as an `ipaddress` object;
  - HTTP basic credentials, as a `BasicAuth`.
- `RequestInfo.clone()` copies a request. `RequestInfo.clone_without_variables()`
  copies it without its GET and POST variables. Both add one to `clone_depth`.
- `extract_post_data(headers, body, max_size, upload_dir)` handles bodies by
  content type:
  - `application/x-www-form-urlencoded` bodies are decoded.
  - `multipart/form-data` bodies are split by `parse_multipart`. Text fields
    become variables. File parts are written to temporary files in
    `upload_dir`.
  - Any other content type gives no data.
  - Size limits are enforced and raise `ValueError`. An oversized urlencoded
    body carries an `HttpError` 400 as its cause.
- `is_file_field_empty(uploaded)` detects a file input that was left blank:
  an empty `application/octet-stream` part with no file name. Such parts are
  dropped.
- `parse_query`, `parse_cookies` and `parse_basic_auth` are also usable on
  their own.

### `pagehttp.responses`

- `HttpResponse`: holds a status, a list of headers and a body.
  `header(name)` looks up a header without regard to case.
- `HttpError`: an exception that carries an HTTP status.
- `DatabaseBusyError`: signals that no database connection was available.
- `Environment`: has the values `DEVELOPMENT` and `PRODUCTION`, and an
  `is_prod()` method.
- `error_response(error, environment, retry_after=None)`: builds a
  plain-text error page.
  - The page lists the error and its cause chain outside production, and
    hides them in production.
  - An `HttpError` anywhere in the chain sets the status.
  - A `DatabaseBusyError` gives 429 with a `Retry-After` header. Its value is
    the one given, or a random 1–15 seconds.
  - Any other error gives 500.

### `pagehttp.response_writer`

`ResponseWriter(max_pending)` buffers a page body and hands it to the client
in chunks:

- `write()` appends to the buffer.
- `flush()` sends the buffer without waiting. It raises `RowLimitExceeded`
  when `max_pending` chunks are already queued.
- `await async_flush()` waits until there is room in the queue.
- `await close_with_error(message)` sends what is buffered, then the message.
- `close()` ends the stream. It is also called on leaving a `with` block.
- The consumer reads chunks with `async for chunk in writer`. Leaving that
  loop early marks the client as gone. After that, flushing raises
  `ClientDisconnected`.

### `pagehttp.routing`

- `path_to_sql_file(path)` maps a request path to a `PurePosixPath`:
  - a path without an extension maps to its `index.sql`;
  - a `.sql` path maps to itself;
  - anything else gives `None`.
- `strip_site_prefix` removes the site prefix. `request_path` removes it and
  also percent-decodes the path.
- Redirect helpers:
  - `redirect_missing_prefix` returns a 308 to the site prefix.
  - `redirect_missing_trailing_slash` returns a 301 that adds `/` to paths
    not ending in `.sql`, keeping the query.
  - `default_prefix_redirect` returns a 308 to the same path inside the site
    prefix.
- `fallback_candidates(path)` yields the `404.sql` files to try, nearest
  directory first, ending with the root one.
- `serve_file(root, path, site_prefix, if_modified_since)` reads a file
  below `root`.
  - It returns 304 when the file has not changed since `if_modified_since`.
  - It guesses `Content-Type` from the file name.
  - It raises `HttpError` 404 for missing files and 403 for `..` in the path
    or for unreadable files.
- `form_limit` and `payload_limit` compute body size limits from the
  maximum upload size. The payload limit is twice the form limit.
  `form_overflow_message` explains a rejected form.
- `default_headers(server_name, version, content_security_policy)` returns
  the `Server` header, plus a `Content-Security-Policy` header when a policy
  is given.
- `bind_error` and `unix_socket_bind_error` wrap an `OSError` in a
  `RuntimeError` with an explanation.
- `welcome_message` formats the start-up message.

### `pagehttp.static_content`

- `StaticAsset(filename, content, mime)` holds an already gzip-compressed
  asset. `respond(if_none_match)` returns it with the following headers:
  - `Content-Encoding: gzip`;
  - a strong `ETag` built from the file name;
  - `Cache-Control: public, max-age=604800, immutable`.

  It returns 304 when `If-None-Match` lists that tag.
- `etag_matches(header_value, etag)` does the weak comparison.

## Example

```python
from pagehttp.request_variables import param_map
from pagehttp.routing import path_to_sql_file, fallback_candidates

params = param_map([("tags[]", "a"), ("tags[]", "b"), ("page", "1"), ("page", "2")])
# {"tags": ["a", "b"], "page": "2"}

path_to_sql_file("/blog/")           # PurePosixPath("/blog/index.sql")
path_to_sql_file("/style.css")       # None: served as a static file
[str(p) for p in fallback_candidates("/a/b/c")]
# ["/a/b/404.sql", "/a/404.sql", "/404.sql", "404.sql"]
```

## What it does not do

This package is a set of helpers, not a running server. It does not:

- listen on a socket or speak HTTP on the wire;
- connect to a database;
- run `.sql` files;
- render HTML pages.

It ships no bundled JavaScript, CSS or icon assets. A `StaticAsset` must be
given its compressed content by the caller.

## Running the tests

```
pip install -e ".[test]"
pytest
```