"""Account status, manual payments and administrative grants."""
