"""Session bridge modules for webtmux.

- pty: PTY backend, session engine and websocket router
- multiplexer: tmux/psmux controllers and listing parser
"""
