"""Raw store, silver log, gold store and run repository backends."""
