# terracotta

A small lobby for playing Minecraft over LAN with friends who are not on your
network. One player hosts a world and gets a room code; the others use that
code and the world appears in their multiplayer list as if it were on their
local network.

terracotta starts an EasyTier node (`easytier-core`) that joins a private
virtual network named after the room code, and forwards the host's game port
to the guests. A small local web server controls the whole thing.

## Installing

```
pip install .
```

An `easytier-core` executable is required. terracotta uses the file named by
the `TERRACOTTA_EASYTIER` environment variable, or else the first
`easytier-core` (or `easytier-core.exe`) found on the search path. If neither
exists, `terracotta` logs `Cannot start: ...` and exits with status 1.

## Running

```
terracotta
```

Only one instance runs at a time. The first one takes a lock file
(`terracotta.lock` in the temporary directory), starts a web server on
`127.0.0.1` at a free port, opens it in your browser and writes the port into
the lock file. Running `terracotta` again while it is up just opens the page of
the running instance.

### Web interface

All routes are `GET`:

| Path | Effect |
| --- | --- |
| `/state` | JSON: `state` (`waiting`, `scanning`, `hosting` or `guesting`), `index` (incremented on every change), plus `room` when hosting or `url` when guesting |
| `/state/ide` | stop whatever is running and wait |
| `/state/scanning` | listen for a LAN world to host |
| `/state/guesting?room=CODE` | join a room; `400` when no valid code is found |
| `/log` | this run's log file |
| anything else | a static file; `/` serves `_.html` |

### Hosting

1. Open your world to LAN in Minecraft.
2. Switch to scanning. terracotta listens for LAN announcements on port 4445
   (multicast `224.0.2.60` and `ff75:230::60`), ignoring its own. As soon as a
   world is seen, it creates a room for that world's port, starts EasyTier as
   the host (`10.144.144.1`) and reports the room code, such as
   `ABCDE-FGHJK-LMNPQ-RSTUV-WXYZ0`.
3. Send the code to your friends.

### Joining

Give the room code to `/state/guesting`. terracotta joins the room's virtual
network, forwards the host's world to port 35781 on this machine
(`127.0.0.1:35781`), and announces it once a second on the local network so
that it shows up in Minecraft's multiplayer list.

If EasyTier exits while hosting or joining, terracotta goes back to waiting;
the last 500 lines of EasyTier's output are logged.

### Logs and idle shutdown

Output is written to a file named after the start time, such as
`terracotta-log/2024-05-01-12-30-00.log`, under your home directory on macOS
and under the temporary directory elsewhere. Pass `--redirect-std=no` to keep
output on the console, or `--redirect-std=yes` to force redirection.

While waiting or scanning, terracotta shuts itself down after ten minutes
without a request to the interface.

### Debug mode

With `TERRACOTTA_DEBUG` set to `1`, `yes` or `true`, the server listens on port
8080, does not open a browser, keeps output on the console unless
`--redirect-std=yes` is given, and shuts down after 20 idle seconds.

## Room codes

A room code carries the network name, the network secret and the host's game
port, plus a check character. It is case-insensitive, and `I` and `O` are read
as `1` and `0`. The code is found inside surrounding text, so pasting a whole
chat message works.

```python
from terracotta.code import Room

room = Room.create(25565)
print(room.code)
assert Room.parse(f"join me: {room.code}").port == 25565
```

`Room.parse` raises `ValueError` when the text holds no valid code, and
`Room.easytier_args` gives the command line EasyTier is started with.

## What is not included

- The web page itself. Static files are served from the directory named by the
  `TERRACOTTA_WEB` environment variable, or else a `web` directory next to the
  package, which the package does not ship; without one, every page other than
  the routes above answers `404`.
- The `easytier-core` executable, which must be installed separately.

## Development

```
pip install -e .[test]
pytest
```