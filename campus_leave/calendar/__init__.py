"""Calendar module — working day policies, holidays, exceptions, resolution."""
