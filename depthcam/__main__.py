from depthcam.cli import main

raise SystemExit(main())
