"""Legacy contract state: cache service, interaction replay and resolution."""
