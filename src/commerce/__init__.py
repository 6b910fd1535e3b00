"""Commerce core: stock reservations, order lifecycle, payment confirmation and tracking."""
