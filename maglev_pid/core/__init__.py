"""Control-and-physics core of the levitated-ball simulation."""
