"""Contact request intake for concerto."""
