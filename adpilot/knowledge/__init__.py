"""Knowledge — decaying facts and the librarian that curates them."""
